class TracerError(Exception):
    pass


class DataSourceError(TracerError):
    pass


class RateLimitError(DataSourceError):
    pass


class RiskLookupError(DataSourceError):
    pass


class InvalidTraceParams(TracerError, ValueError):
    pass


class EngineBusyError(TracerError):
    pass
