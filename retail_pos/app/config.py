import os
from typing import List

class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _float(self, raw: str, *, default: float) -> float:
        try:
            v = float((raw or "").strip())
        except ValueError:
            return default
        return v if v > 0 else default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # Spreadsheet script endpoint holding products, invoices and return operations.
        self.store_url = os.getenv("POS_STORE_URL", "").strip()
        self.store_token = os.getenv("POS_STORE_TOKEN", "").strip()
        self.store_timeout_s = self._float(os.getenv("POS_STORE_TIMEOUT_S", ""), default=10.0)
        self.branch_id = os.getenv("POS_BRANCH_ID", "").strip() or "HAM"
        self.cashier = os.getenv("POS_CASHIER", "").strip()
        # Empty keeps the cart snapshot in memory only.
        self.cart_path = os.getenv("POS_CART_PATH", "").strip()
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )

settings = Settings()
