"""Storage of confirmation receipts and error screenshots"""

import os
import re
import asyncio
from pathlib import Path
from urllib.parse import quote
from loguru import logger

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


def build_receipt_url(base_url: str, confirmation_number: str) -> str:
    """Predictable receipt URL for a confirmation number"""
    return f"{base_url.rstrip('/')}/{quote(confirmation_number, safe='')}.png"


def _safe_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub('_', name).strip('_') or 'unnamed'


class LocalReceiptStorage:
    """Writes screenshots to a local directory named after the receipt URL scheme"""

    def __init__(self, receipts_dir: str = 'receipts', base_url: str = 'https://storage.example.com/confirmations'):
        self.receipts_dir = Path(receipts_dir)
        self.base_url = base_url

    def receipt_url(self, confirmation_number: str) -> str:
        return build_receipt_url(self.base_url, confirmation_number)

    def _write(self, path: Path, data: bytes):
        os.makedirs(path.parent, exist_ok=True)
        path.write_bytes(data)

    async def save_receipt(self, confirmation_number: str, screenshot: bytes) -> Path:
        path = self.receipts_dir / f"{_safe_filename(confirmation_number)}.png"
        await asyncio.to_thread(self._write, path, screenshot)
        logger.info(f"Saved confirmation receipt {path}")
        return path

    async def save_error_screenshot(self, submission_id: str, attempt: int, screenshot: bytes) -> Path:
        path = self.receipts_dir / 'errors' / f"{_safe_filename(submission_id)}_attempt{attempt}.png"
        await asyncio.to_thread(self._write, path, screenshot)
        logger.debug(f"Saved error screenshot {path}")
        return path
