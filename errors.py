"""Domain errors raised by the services and mapped to HTTP responses in main.py."""


class ShopError(Exception):
    code = "SHOP_ERROR"
    status_code = 400
    message = "Error en la tienda"

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ProductNotFound(ShopError):
    code = "PRODUCT_NOT_FOUND"
    message = "Uno o más productos no existen"


class InsufficientStock(ShopError):
    code = "INSUFFICIENT_STOCK"
    message = "No hay stock suficiente para algún producto"


class Unauthorized(ShopError):
    code = "UNAUTHORIZED"
    status_code = 401
    message = "No autorizado"


class LastAdminProtected(ShopError):
    code = "LAST_ADMIN_PROTECTED"
    message = "No se puede quitar el último administrador"


class DuplicateSlug(ShopError):
    code = "DUPLICATE_SLUG"
    message = "Ya existe un registro con ese slug"


class NotFound(ShopError):
    code = "NOT_FOUND"
    status_code = 404
    message = "No encontrado"


class GatewayUnavailable(ShopError):
    code = "GATEWAY_UNAVAILABLE"
    status_code = 503
    message = "Pagos con Mercado Pago no están configurados"

    def __init__(self, message=None, status_code=None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class InvalidStatusTransition(ShopError):
    code = "INVALID_STATUS_TRANSITION"
    message = "Cambio de estado no permitido"
