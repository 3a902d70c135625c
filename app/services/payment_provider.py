"""支付网关客户端（Razorpay 兼容接口）

只实现订单生命周期需要的两件事：
创建支付单（网络调用，有超时）和回调签名校验（本地 HMAC 计算）。
"""

from dataclasses import dataclass
from decimal import Decimal
import hashlib
import hmac
import logging
from typing import Optional

import httpx

from app.core.config import settings
from app.core.exceptions import ProviderUnavailable
from app.services.pricing import to_minor_units

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderOrder:
    """网关返回的支付单句柄"""
    id: str
    amount: int
    currency: str


def compute_signature(secret: str, provider_order_ref: str, provider_payment_ref: str) -> str:
    message = f"{provider_order_ref}|{provider_payment_ref}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


class PaymentProvider:
    """支付网关客户端，进程内共享一个 httpx 连接池"""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, client: Optional[httpx.Client] = None) -> "PaymentProvider":
        return cls(
            key_id=settings.PAYMENT_KEY_ID,
            key_secret=settings.PAYMENT_KEY_SECRET,
            base_url=settings.PAYMENT_API_URL,
            timeout=settings.PAYMENT_TIMEOUT_SECONDS,
            client=client,
        )

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def create_payment_intent(self, amount: Decimal, currency: str, reference: str) -> ProviderOrder:
        """在网关创建支付单

        Raises:
            ProviderUnavailable: 未配置密钥、超时、网络错误或网关返回非 2xx
        """
        if not self.configured:
            raise ProviderUnavailable("在线支付未配置")

        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": reference,
        }
        try:
            response = self.client.post(
                f"{self.base_url}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
            )
            response.raise_for_status()
            data = response.json()
            return ProviderOrder(
                id=data["id"],
                amount=int(data.get("amount", payload["amount"])),
                currency=data.get("currency", currency),
            )
        except httpx.HTTPError as e:
            logger.warning(f"支付网关调用失败: reference={reference}, error={e}")
            raise ProviderUnavailable() from e
        except (KeyError, ValueError) as e:
            logger.warning(f"支付网关返回格式异常: reference={reference}, error={e}")
            raise ProviderUnavailable() from e

    def verify_signature(self, provider_order_ref: str, provider_payment_ref: str, signature: str) -> bool:
        """校验回调签名（常量时间比较）"""
        if not self.key_secret or not signature:
            return False
        expected = compute_signature(self.key_secret, provider_order_ref, provider_payment_ref)
        return hmac.compare_digest(expected, signature)

    def close(self) -> None:
        self.client.close()
