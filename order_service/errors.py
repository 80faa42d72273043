"""
Order Service — ドメインエラー

すべて呼び出し境界で回復可能なエラー。HTTP 層が status_code に従って
レスポンスへ変換する。
"""

from uuid import UUID


class OrderServiceError(Exception):
    status_code = 400

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def details(self) -> dict:
        return {}


class ValidationError(OrderServiceError):
    """入力不正。処理は一切行われない。"""

    status_code = 422

    def __init__(self, message: str) -> None:
        super().__init__("validation_error", message)


class ProductNotFound(OrderServiceError):
    status_code = 404

    def __init__(self, product_id: UUID) -> None:
        super().__init__("product_not_found", f"Product not found: {product_id}")
        self.product_id = product_id

    def details(self) -> dict:
        return {"product_id": str(self.product_id)}


class InsufficientStock(OrderServiceError):
    """在庫不足。対象商品と引き当て可能数を保持する。"""

    status_code = 409

    def __init__(
        self, product_id: UUID, product_name: str, available: int, requested: int
    ) -> None:
        super().__init__(
            "insufficient_stock",
            f"Insufficient stock for {product_name}: "
            f"requested={requested}, available={available}",
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested

    def details(self) -> dict:
        return {
            "product_id": str(self.product_id),
            "available": self.available,
            "requested": self.requested,
        }


class OrderNotFound(OrderServiceError):
    """注文が存在しない、または呼び出し元の所有でない。"""

    status_code = 404

    def __init__(self, order_id: UUID) -> None:
        super().__init__("order_not_found", f"Order not found: {order_id}")
        self.order_id = order_id

    def details(self) -> dict:
        return {"order_id": str(self.order_id)}


class Forbidden(OrderServiceError):
    status_code = 403

    def __init__(self, message: str = "Admin role required") -> None:
        super().__init__("forbidden", message)


class OperationTimeout(OrderServiceError):
    """書き込みが期限内に終わらなかった。トランザクションはロールバック済み。"""

    status_code = 504

    def __init__(self, timeout: float) -> None:
        super().__init__("timeout", f"Operation timed out after {timeout}s")
        self.timeout = timeout


class InvalidTransition(OrderServiceError):
    status_code = 409

    def __init__(self, order_id: UUID, current: str, requested: str) -> None:
        super().__init__(
            "invalid_transition",
            f"Order {order_id} cannot move from {current} to {requested}",
        )
        self.order_id = order_id
        self.current = current
        self.requested = requested

    def details(self) -> dict:
        return {"current": self.current, "requested": self.requested}
