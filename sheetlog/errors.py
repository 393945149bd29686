class SheetlogError(Exception):
    pass


class RequestError(SheetlogError, ValueError):
    """Malformed request input. The router turns it into an error envelope."""

    def __init__(self, status, code, details=None):
        super().__init__(f"{code}: {details}")
        self.status = status
        self.code = code
        self.details = details or {}


class CsvExportError(SheetlogError):
    def __init__(self, status_code, message):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class SheetlogResponseError(SheetlogError):
    """The endpoint answered with something that is not a JSON envelope."""

    def __init__(self, status_code, text):
        super().__init__(f"Non-JSON response ({status_code}): {text[:200]}")
        self.status_code = status_code
        self.text = text
