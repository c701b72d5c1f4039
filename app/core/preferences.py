from __future__ import annotations

from dataclasses import dataclass, field, replace
import json
import sqlite3
from typing import Any, Dict, Iterable, Optional, Tuple

from .models import normalize_period


@dataclass(frozen=True)
class ChartPreferences:
    enabled_mas: Tuple[int, ...] = field(default_factory=tuple)
    signals_enabled: bool = False
    events_enabled: bool = True
    volume_enabled: bool = False
    last_period: str = '1D'

    def with_ma(self, period: int, enabled: bool) -> 'ChartPreferences':
        current = set(self.enabled_mas)
        if enabled:
            current.add(int(period))
        else:
            current.discard(int(period))
        return replace(self, enabled_mas=tuple(sorted(current)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled_mas': list(self.enabled_mas),
            'signals_enabled': self.signals_enabled,
            'events_enabled': self.events_enabled,
            'volume_enabled': self.volume_enabled,
            'last_period': self.last_period,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, raw: Any, allowed_mas: Optional[Iterable[int]] = None) -> 'ChartPreferences':
        """Tolerant decode: unknown keys are ignored and bad values fall back to defaults."""
        defaults = cls()
        if not isinstance(raw, dict):
            return defaults
        allowed = set(int(v) for v in allowed_mas) if allowed_mas is not None else None
        mas = []
        for value in raw.get('enabled_mas') or []:
            try:
                period = int(value)
            except (TypeError, ValueError):
                continue
            if period > 0 and (allowed is None or period in allowed):
                mas.append(period)
        period = raw.get('last_period', defaults.last_period)
        try:
            period = normalize_period(period)
        except ValueError:
            period = defaults.last_period
        return cls(
            enabled_mas=tuple(sorted(set(mas))),
            signals_enabled=bool(raw.get('signals_enabled', defaults.signals_enabled)),
            events_enabled=bool(raw.get('events_enabled', defaults.events_enabled)),
            volume_enabled=bool(raw.get('volume_enabled', defaults.volume_enabled)),
            last_period=period,
        )

    @classmethod
    def from_json(cls, text: Optional[str], allowed_mas: Optional[Iterable[int]] = None) -> 'ChartPreferences':
        if not text:
            return cls()
        try:
            raw = json.loads(text)
        except ValueError:
            return cls()
        return cls.from_dict(raw, allowed_mas)


class PreferenceStore:
    """Per-instrument chart state: toggles and the three measure points."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute('PRAGMA journal_mode=WAL;')
        conn.execute('PRAGMA synchronous=NORMAL;')
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                '''
                CREATE TABLE IF NOT EXISTS chart_preferences (
                    symbol TEXT PRIMARY KEY,
                    prefs_json TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                '''
            )
            conn.execute(
                '''
                CREATE TABLE IF NOT EXISTS measure_points (
                    symbol TEXT PRIMARY KEY,
                    points_json TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                '''
            )

    def load_preferences(self, symbol: str, allowed_mas: Optional[Iterable[int]] = None) -> ChartPreferences:
        with self._connect() as conn:
            cur = conn.execute('SELECT prefs_json FROM chart_preferences WHERE symbol=?', (symbol.upper(),))
            row = cur.fetchone()
        return ChartPreferences.from_json(row[0] if row else None, allowed_mas)

    def save_preferences(self, symbol: str, prefs: ChartPreferences, updated_at: int = 0) -> None:
        with self._connect() as conn:
            conn.execute(
                '''
                INSERT OR REPLACE INTO chart_preferences (symbol, prefs_json, updated_at)
                VALUES (?, ?, ?)
                ''',
                (symbol.upper(), prefs.to_json(), int(updated_at)),
            )

    def load_measurements(self, symbol: str) -> Dict[str, Any]:
        with self._connect() as conn:
            cur = conn.execute('SELECT points_json FROM measure_points WHERE symbol=?', (symbol.upper(),))
            row = cur.fetchone()
        if not row:
            return {}
        try:
            raw = json.loads(row[0])
        except ValueError:
            return {}
        return raw if isinstance(raw, dict) else {}

    def save_measurements(self, symbol: str, points: Dict[str, Any], updated_at: int = 0) -> None:
        with self._connect() as conn:
            if not any(points.values()):
                conn.execute('DELETE FROM measure_points WHERE symbol=?', (symbol.upper(),))
                return
            conn.execute(
                '''
                INSERT OR REPLACE INTO measure_points (symbol, points_json, updated_at)
                VALUES (?, ?, ?)
                ''',
                (symbol.upper(), json.dumps(points, sort_keys=True), int(updated_at)),
            )
