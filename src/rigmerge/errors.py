"""Custom exception hierarchy for rigmerge."""


class RigMergeError(Exception):
    """Base exception for all rigmerge errors."""


class ParseError(RigMergeError):
    """Raised when a batch file or YAML scene fails to parse or validate."""


class InputError(RigMergeError):
    """Raised when the subject list, sample times or frame ranges are malformed."""


class SceneError(RigMergeError):
    """Raised when a scene file cannot be opened or lacks required content."""


class HierarchyError(RigMergeError):
    """Raised when a subject's skeleton cannot be resolved (bind poses, joint counts)."""


class ConsistencyError(RigMergeError):
    """Raised when a subject disagrees with the subjects merged before it."""


class WeightError(RigMergeError):
    """Raised when skinning weights are malformed or inconsistent across subjects."""


class ExportError(RigMergeError):
    """Raised when a rig archive cannot be written or read."""
