class MonitorError(Exception):
    pass


class AcquisitionError(MonitorError):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ConfigurationError(MonitorError):
    pass


class NotReadyError(MonitorError):
    def __init__(self, message: str = "no snapshot has been acquired yet"):
        super().__init__(message)
