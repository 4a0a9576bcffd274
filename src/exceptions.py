class ShortLinkError(Exception):
    """Базовая ошибка сервиса коротких ссылок.

    Каждая ошибка несет стабильный код и HTTP-статус, которые
    обработчик в main.py отдает клиенту парой {"error", "message"}.
    """

    code: str = "error"
    status_code: int = 500
    default_message: str = "Внутренняя ошибка"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidUrl(ShortLinkError):
    code = "invalid_url"
    status_code = 400
    default_message = "Некорректный URL"


class CodeConflict(ShortLinkError):
    code = "code_conflict"
    status_code = 409
    default_message = "Такой короткий код уже занят"


class NotFound(ShortLinkError):
    code = "not_found"
    status_code = 404
    default_message = "Ссылка не найдена"


class Expired(ShortLinkError):
    code = "expired"
    status_code = 410
    default_message = "Срок действия ссылки истек"


class Unauthorized(ShortLinkError):
    code = "unauthorized"
    status_code = 401
    default_message = "Пользователь не авторизован"


class StorageUnavailable(ShortLinkError):
    code = "storage_unavailable"
    status_code = 503
    default_message = "Хранилище временно недоступно"


class ImportFormatError(ShortLinkError):
    code = "import_format_error"
    status_code = 400
    default_message = "Некорректный формат файла импорта"


class ConfigurationError(ShortLinkError):
    code = "configuration_error"
    status_code = 500
    default_message = "Ошибка конфигурации"


class InvalidShortCode(ShortLinkError):
    code = "invalid_code"
    status_code = 400
    default_message = "Недопустимый короткий код"
