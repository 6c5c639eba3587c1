"""
Storefront Service — エラー定義

注文パイプラインのエラー分類。
status_code は HTTP レスポンスのステータスクラスに対応する
(4xx = 呼び出し側の問題 / 業務ルール違反、5xx = インフラ障害)。
"""


class OrderServiceError(Exception):
    """注文パイプラインの基底例外"""

    status_code = 500
    kind = "OrderServiceError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidInput(OrderServiceError):
    """入力不正 (副作用なし)"""

    status_code = 422
    kind = "InvalidInput"


class ProductNotFound(OrderServiceError):
    """商品が存在しない (副作用なし)"""

    status_code = 404
    kind = "ProductNotFound"


class InsufficientStock(OrderServiceError):
    """在庫不足 (副作用なし)"""

    status_code = 409
    kind = "InsufficientStock"

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock: requested={requested}, available={available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class OrderNotFound(OrderServiceError):
    status_code = 404
    kind = "OrderNotFound"


class DuplicateOrderNumber(OrderServiceError):
    """注文番号の衝突がリトライ上限まで続いた"""

    kind = "DuplicateOrderNumber"


class CommitFailed(OrderServiceError):
    """在庫引き当て後の永続化に失敗した (在庫は補償済み)"""

    kind = "CommitFailed"


# ── 呼び出し元へは返らない条件 ──────────────────


class NotificationEnqueueFailed(Exception):
    """通知メッセージをキューに投入できなかった (注文自体は成功)"""


class NotificationSendFailed(Exception):
    """メール送信に失敗した (メッセージは再配信される)"""
