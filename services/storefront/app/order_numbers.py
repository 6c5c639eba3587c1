"""
Storefront Service — 注文番号の採番

形式: ORD-<epoch ミリ秒>-<プロセス内連番>-<ランダム 16 進 4 桁>

- ミリ秒はプロセス内で単調増加に補正する (時計の巻き戻りでも逆転しない)
- 同一ミリ秒内は連番で区別する
- 複数プロセス / 複数ホスト間の衝突はランダムサフィックスで回避する
  (それでも衝突した場合は Order Store の UNIQUE 制約で検知してリトライ)
"""

import secrets
import threading
import time


class OrderNumberGenerator:
    def __init__(self, prefix: str = "ORD", clock=time.time_ns) -> None:
        self.prefix = prefix
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = 0
        self._sequence = 0

    def next(self) -> str:
        with self._lock:
            now_ms = self._clock() // 1_000_000
            if now_ms > self._last_ms:
                self._last_ms = now_ms
                self._sequence = 0
            else:
                self._sequence += 1
            ms, seq = self._last_ms, self._sequence
        return f"{self.prefix}-{ms}-{seq:04d}-{secrets.token_hex(2).upper()}"


default_generator = OrderNumberGenerator()
