"""
Storefront Service — メッセージ定義

通知キューに流れるメッセージ。一度発行されたら不変として扱う。
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class OrderConfirmationMessage(BaseModel):
    """注文が確定した (確認メールの送信依頼)"""

    model_config = ConfigDict(frozen=True)

    order_number: str
    email: str
    username: str
    product_name: str
    total_amount: Decimal
