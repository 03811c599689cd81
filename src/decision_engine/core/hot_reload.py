"""
Hot-reload for rule files.

Watches the rules directory and swaps config-defined rules inside a live
engine. Rules added in code are left alone.
"""

import asyncio
import hashlib
from pathlib import Path
from typing import Callable, Optional, Awaitable, Dict, List
from dataclasses import dataclass, field
from datetime import datetime
import structlog

from .config import ConfigLoader, HotReloadConfig
from .errors import ConfigError
from ..rules.engine import RulesEngine
from ..rules.factory import is_config_rule, wrap_definitions
from ..rules.evaluator import ConditionEvaluator

logger = structlog.get_logger()


@dataclass
class ReloadResult:
    """Result of a rules reload attempt."""
    success: bool
    rules_loaded: int = 0
    override_rules_loaded: int = 0
    rules_removed: int = 0
    errors: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)


class RulesReloader:
    """
    Hot-reload manager for rule files.

    Features:
    - Polls the rules directory for added, changed or deleted files
    - Validates every file before touching the engine
    - Debounces rapid changes
    - Swaps config rules in one engine operation
    - Notifies via callback on errors
    """

    def __init__(
        self,
        engine: RulesEngine,
        rules_dir: str,
        config_loader: Optional[ConfigLoader] = None,
        config: Optional[HotReloadConfig] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.engine = engine
        self.rules_dir = Path(rules_dir)
        self.evaluator = evaluator or ConditionEvaluator()
        self.config_loader = config_loader or ConfigLoader(evaluator=self.evaluator)
        self.config = config or HotReloadConfig(enabled=True)

        # File hashes for change detection
        self._file_hashes: Dict[str, str] = {}

        self._on_error: Optional[Callable[[str, List[str]], Awaitable[None]]] = None

        self._running = False
        self._watch_task: Optional[asyncio.Task] = None

    def set_error_callback(
        self,
        callback: Callable[[str, List[str]], Awaitable[None]],
    ) -> None:
        """Set callback for reload errors."""
        self._on_error = callback

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start watching for rule file changes."""
        if not self.config.enabled:
            logger.info("hot_reload_disabled")
            return

        self._running = True
        self._scan_files()
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info(
            "hot_reload_started",
            rules_dir=str(self.rules_dir),
            interval=self.config.check_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop watching for changes."""
        self._running = False
        if self._watch_task:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
        logger.info("hot_reload_stopped")

    async def force_reload(self) -> ReloadResult:
        """Reload all rule files immediately."""
        self._scan_files()
        return await self._do_reload()

    async def check_once(self) -> Optional[ReloadResult]:
        """Reload if any rule file changed since the last scan."""
        if not self._detect_changes():
            return None
        return await self._do_reload()

    async def _watch_loop(self) -> None:
        """Background loop polling for file changes."""
        while self._running:
            try:
                await asyncio.sleep(self.config.check_interval_seconds)

                if self._detect_changes():
                    # Debounce, then pick up anything written meanwhile
                    await asyncio.sleep(self.config.debounce_seconds)
                    self._detect_changes()

                    result = await self._do_reload()
                    if not result.success:
                        await self._notify_error(result.errors)

            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("hot_reload_watch_error")

    async def _notify_error(self, errors: List[str]) -> None:
        if not self._on_error:
            return
        try:
            await self._on_error("Rules reload failed", errors)
            logger.info("hot_reload_error_notified", errors=errors)
        except Exception as notify_err:
            logger.error(
                "hot_reload_notify_failed",
                error=str(notify_err),
                original_errors=errors,
            )

    def _current_hashes(self) -> Dict[str, str]:
        if not self.rules_dir.exists():
            return {}
        return {
            str(path): self._compute_hash(path)
            for path in self.config_loader.rule_files(self.rules_dir)
        }

    def _scan_files(self) -> None:
        """Record hashes of all rule files."""
        self._file_hashes = self._current_hashes()

    def _detect_changes(self) -> bool:
        """Check whether rule files were added, changed or deleted."""
        current = self._current_hashes()
        changed = current != self._file_hashes
        if changed:
            for path in set(current) ^ set(self._file_hashes):
                logger.debug("rules_file_added_or_deleted", file=path)
            for path in set(current) & set(self._file_hashes):
                if current[path] != self._file_hashes[path]:
                    logger.debug("rules_file_changed", file=path)
        self._file_hashes = current
        return changed

    def _compute_hash(self, path: Path) -> str:
        """Compute hash of file contents."""
        try:
            content = path.read_bytes()
        except OSError:
            return ""
        return hashlib.sha256(content).hexdigest()[:16]

    async def _do_reload(self) -> ReloadResult:
        """Validate all rule files, then swap config rules in the engine."""
        try:
            rule_set = self.config_loader.load_rules(str(self.rules_dir))
        except ConfigError as e:
            logger.error("hot_reload_rules_error", error=e.message, **e.context)
            return ReloadResult(success=False, errors=[f"Rules error: {e.message}"])

        rules, override_rules = wrap_definitions(rule_set, self.evaluator)
        removed = await self.engine.replace_rules(is_config_rule, rules, override_rules)

        logger.info(
            "hot_reload_applied",
            rules=len(rules),
            override_rules=len(override_rules),
            removed=removed,
        )
        return ReloadResult(
            success=True,
            rules_loaded=len(rules),
            override_rules_loaded=len(override_rules),
            rules_removed=removed,
        )
