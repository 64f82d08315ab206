"""
Доменные ошибки сервиса заказов.

Бросаются из crud-слоя и превращаются в HTTP-ответ обработчиком в main.py.
Каждый класс знает свой HTTP-код.
"""
from typing import Any


class ServiceError(Exception):
    """Базовая ошибка, ответ клиенту: {"detail": message}."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ServiceError):
    status_code = 404

    def __init__(self, entity: str, entity_id: Any = None):
        if entity_id is not None:
            message = f"{entity} with id={entity_id} not found"
        else:
            message = f"{entity} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(ServiceError):
    status_code = 400


class InvalidMerge(ServiceError):
    status_code = 409


class InvalidStatusTransition(ServiceError):
    status_code = 409
