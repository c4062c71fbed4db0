"""
Error taxonomy for the replay curation pipeline.

Per-candidate errors are recorded against one replay and never stop the run.
ToolMissing and StoreError (on the initial manifest load) are process-wide
and propagate to the caller.
"""


class CurationError(Exception):
    pass


class Cancelled(CurationError):
    """The run was cancelled while this candidate was in flight."""


# -- resolution --

class ResolveError(CurationError):
    pass


class UpstreamError(ResolveError):
    """Transport, HTTP status, or payload failure talking to the web API."""


class NoReplayUrl(ResolveError):
    pass


# -- download --

class DownloadError(CurationError):
    pass


class TransientDownloadError(DownloadError):
    """Connection reset, timeout, 5xx or 429 after all attempts were used."""


class IntegrityError(DownloadError):
    pass


class FatalDownloadError(DownloadError):
    pass


# -- analysis --

class AnalysisError(CurationError):
    pass


class ToolMissing(AnalysisError):
    pass


class CorruptReplay(AnalysisError):
    pass


# -- finalize / manifest --

class FinalizeError(CurationError):
    pass


class NameCollisionExhausted(FinalizeError):
    pass


class FinalizeIOError(FinalizeError):
    pass


class StoreError(CurationError):
    pass


class ManifestNotRecorded(CurationError):
    """The replay was placed but its manifest entry could not be written.

    Not a lost file: the replay is in the library, it just is not deduped
    yet, so a later run may download it again under a -N name.
    """

    def __init__(self, replay, cause: Exception):
        super().__init__(f"{replay.destination_path} saved but not recorded: {cause}")
        self.replay = replay
