from shutterbox.schemas.photo import (  # noqa: F401
    FingerprintKey, IdKey, Photo, PhotoDraft, PhotoKey, format_fid, parse_key,
)
from shutterbox.schemas.reports import (  # noqa: F401
    CheckReport, CheckResult, CheckStatus, ImportReport, ImportResult, ImportState,
    ImportStatus, PreviewReport, PreviewResult, PreviewStatus,
)
