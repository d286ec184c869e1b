"""
Leiturinha Logging System

Clean terminal output for production + detailed file logging for debugging.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Any, Dict
import json
import os


class LeiturinhaLogger:
    """
    Two-mode logging system:
    - Terminal: Clean, timestamped key events only
    - Debug file: Full detailed logs for troubleshooting
    """

    def __init__(self, debug_mode: bool = False, settings=None):
        self.debug_mode = debug_mode
        self.settings = settings
        self.log_dir = Path("logs")

        # kind -> JSONL file, only for the enabled debug flags
        self._jsonl_files: Dict[str, Path] = {}
        if settings:
            enabled = {"storage": settings.debug_storage, "api_calls": settings.debug_api_calls}
            started = datetime.now().strftime("%Y%m%d_%H%M%S")
            for kind, on in enabled.items():
                if on:
                    debug_dir = Path(settings.debug_log_dir)
                    debug_dir.mkdir(parents=True, exist_ok=True)
                    self._jsonl_files[kind] = debug_dir / f"{kind}_{started}.jsonl"

        if debug_mode:
            self.log_dir.mkdir(exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = self.log_dir / f"leiturinha_debug_{timestamp}.txt"

            self.file_logger = logging.getLogger("leiturinha_debug")
            self.file_logger.setLevel(logging.DEBUG)

            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            self.file_logger.addHandler(file_handler)

            print(f"📝 Debug mode enabled. Logging to: {log_file}")

    def _timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def _terminal_log(self, emoji: str, message: str, color: str = ""):
        """Print clean log to terminal"""
        timestamp = self._timestamp()

        colors = {
            "green": "\033[92m",
            "blue": "\033[94m",
            "yellow": "\033[93m",
            "red": "\033[91m",
            "cyan": "\033[96m",
            "reset": "\033[0m"
        }

        color_code = colors.get(color, "")
        reset = colors["reset"] if color_code else ""

        print(f"{color_code}[{timestamp}] {emoji} {message}{reset}")

    def _debug_log(self, level: str, component: str, message: str, data: Optional[dict] = None):
        """Write detailed log to debug file"""
        if self.debug_mode and hasattr(self, 'file_logger'):
            log_msg = f"{component} | {message}"
            if data:
                log_msg += f" | Data: {data}"

            log_func = getattr(self.file_logger, level.lower(), self.file_logger.info)
            log_func(log_msg)

    # ===== Terminal Output Methods =====

    def story_requested(self, user_id: int, age_group: str, character_count: int, text_only: bool):
        msg = f"Story requested by user {user_id} (age {age_group}, {character_count} characters"
        msg += ", text only)" if text_only else ", illustrated)"
        self._terminal_log("📨", msg, "cyan")
        self._debug_log("info", "STORY", "Requested", {
            "user_id": user_id,
            "age_group": age_group,
            "character_count": character_count,
            "text_only": text_only
        })

    def story_created(self, story_id: int, title: str, chapter_count: int, duration: Optional[float] = None):
        """Log when a story has been assembled and stored"""
        msg = f"Story created: \"{title}\" (Story: {story_id}, {chapter_count} chapters)"
        if duration:
            msg += f" in {duration:.1f}s"
        self._terminal_log("✅", msg, "green")
        self._debug_log("info", "STORY", "Created", {
            "story_id": story_id,
            "title": title,
            "chapter_count": chapter_count,
            "duration": duration
        })

    def story_failed(self, user_id: int, error: str):
        msg = f"Story generation failed for user {user_id} - {error}"
        self._terminal_log("❌", msg, "red")
        self._debug_log("error", "STORY", "Failed", {
            "user_id": user_id,
            "error": error
        })

    def illustration_completed(self, story_id: int, chapter_index: int, is_backup: bool):
        """Log a chapter illustration, flagging backup images"""
        if is_backup:
            msg = f"Backup image used for chapter {chapter_index + 1} (Story: {story_id})"
            self._terminal_log("🖼️", msg, "yellow")
        else:
            msg = f"Illustration ready for chapter {chapter_index + 1} (Story: {story_id})"
            self._terminal_log("🎨", msg, "green")
        self._debug_log("info", "ILLUSTRATION", "Completed", {
            "story_id": story_id,
            "chapter_index": chapter_index,
            "is_backup": is_backup
        })

    def illustration_failed(self, story_id: int, chapter_index: int, error: str):
        msg = f"Illustration failed for chapter {chapter_index + 1} (Story: {story_id}) - {error}"
        self._terminal_log("❌", msg, "red")
        self._debug_log("error", "ILLUSTRATION", "Failed", {
            "story_id": story_id,
            "chapter_index": chapter_index,
            "error": error
        })

    def illustrations_summary(self, story_id: int, success: int, backup: int, failed: int,
                              duration: Optional[float] = None):
        msg = f"Illustrations done (Story: {story_id}): {success} generated, {backup} backup, {failed} failed"
        if duration:
            msg += f" in {duration:.1f}s"
        color = "green" if failed == 0 and backup == 0 else "yellow"
        self._terminal_log("📚", msg, color)
        self._debug_log("info", "ILLUSTRATION", "Bulk summary", {
            "story_id": story_id,
            "success": success,
            "backup": backup,
            "failed": failed,
            "duration": duration
        })

    def reading_progress(self, child_id: int, story_id: int, progress: int, completed: bool):
        msg = f"Child {child_id} read story {story_id}: {progress}%"
        if completed:
            msg += " (completed)"
        self._terminal_log("📖", msg, "blue")
        self._debug_log("info", "READING", "Progress", {
            "child_id": child_id,
            "story_id": story_id,
            "progress": progress,
            "completed": completed
        })

    def error(self, component: str, message: str, error: Exception = None):
        """Log error"""
        msg = f"Error in {component}: {message}"
        if error:
            msg += f" ({type(error).__name__})"
        self._terminal_log("⚠️", msg, "red")
        self._debug_log("error", component, message, {
            "error_type": type(error).__name__ if error else None,
            "error_message": str(error) if error else None
        })

    # ===== Debug Logging Methods =====

    def _append_jsonl(self, kind: str, entry: Dict[str, Any]):
        """Append one entry to the JSONL file for `kind` (no-op when that flag is off)"""
        log_file = self._jsonl_files.get(kind)
        if log_file is None:
            return
        entry = {"timestamp": datetime.now().isoformat(), "type": kind, **entry}
        try:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            self.error("LOGGER", f"Could not append to {log_file.name}: {e}")

    @staticmethod
    def _shorten(value: Any, limit: int = 500) -> str:
        text = str(value)
        return text if len(text) <= limit else f"{text[:limit]}... ({len(text)} chars)"

    def storage_operation(self, operation: str, path: str, data_summary: str,
                          size_bytes: int = 0, duration: Optional[float] = None):
        """Storage write (SQL Server or memory); shown only with DEBUG_STORAGE"""
        if "storage" not in self._jsonl_files:
            return

        elapsed = f" in {duration * 1000:.0f}ms" if duration else ""
        self._terminal_log("💾", f"Storage {operation.upper()} → {path}{elapsed}", "yellow")
        self._append_jsonl("storage", {
            "operation": operation,
            "path": path,
            "summary": self._shorten(data_summary),
            "size_bytes": size_bytes,
            "duration_seconds": duration,
        })

    def provider_api_call(self, provider: str, model: str, kind: str = "text",
                          prompt_tokens: int = 0, completion_tokens: int = 0,
                          latency: Optional[float] = None, status: str = "success"):
        """Provider call (text, image or audio); shown only with DEBUG_API_CALLS"""
        if "api_calls" not in self._jsonl_files:
            return

        ok = status == "success"
        tokens = prompt_tokens + completion_tokens
        msg = f"API {provider}/{model} [{kind}]"
        if kind == "text":
            msg += f": {tokens} tokens"
        if latency:
            msg += f" in {latency:.1f}s"
        self._terminal_log("🤖" if ok else "⚠️", msg, "green" if ok else "yellow")
        self._append_jsonl("api_calls", {
            "provider": provider,
            "model": model,
            "kind": kind,
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": tokens,
            "latency_seconds": latency,
            "status": status,
        })


# Global logger instance
_logger: Optional[LeiturinhaLogger] = None


def get_logger(settings=None) -> LeiturinhaLogger:
    """Get global logger instance"""
    global _logger
    if _logger is None:
        debug_mode = os.getenv("DEBUG_MODE", "false").lower() == "true"
        _logger = LeiturinhaLogger(debug_mode=debug_mode, settings=settings)
    return _logger


def init_logger(debug_mode: bool = False, settings=None):
    """Initialize logger with specific debug mode and settings"""
    global _logger
    _logger = LeiturinhaLogger(debug_mode=debug_mode, settings=settings)
    return _logger
