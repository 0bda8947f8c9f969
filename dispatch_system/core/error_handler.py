#!/usr/bin/env python3
"""
ErrorHandler - Centralized handling for infrastructure faults

The dispatch layer must stay usable when the store misbehaves: a corrupt
collection degrades to an empty list, a failed publish just means other
instances refresh on focus instead, a missing blob becomes "preview
unavailable". Those faults are routed here so they are logged, counted,
de-duplicated and surfaced as alerts instead of being raised.

Typed workflow failures (dispatch_errors.py) never pass through here.
"""

import traceback
import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum
from collections import defaultdict

from dispatch_config import DispatchConfig


class ErrorSeverity(Enum):
    """Error severity levels with clear action mappings"""
    CRITICAL_STOP = "critical_stop"       # Store unusable, operator intervention needed
    HIGH_DEGRADE = "high_degrade"         # Collection or feature degraded, keep running
    MEDIUM_ALERT = "medium_alert"         # Operator should know, show in alerts panel
    LOW_DEBUG = "low_debug"               # Background issue, show only in debug mode


class ErrorCategory(Enum):
    """Fault categories for the dispatch data layer"""
    # Shared store
    STORE_CONNECTION = "store_connection"     # Redis unreachable
    STORE_LOAD = "store_load"                 # Collection read failed or corrupt
    STORE_SAVE = "store_save"                 # Collection write failed
    DATA_SERIALIZATION = "serialization"      # JSON encode/decode problems

    # Attachments
    BLOB_STORE = "blob_store"                 # Blob put/get/delete

    # Cross-instance signalling
    CHANGE_NOTIFICATION = "change_notify"     # Publish/subscribe/poll
    REFRESH_HANDLER = "refresh_handler"       # A change listener raised

    # Data consistency
    INTEGRITY = "integrity"                   # Dangling references found on read

    # Catch-all
    GENERAL = "general"


class ErrorHandler:
    """Centralized error handling to replace scattered try/except blocks"""

    def __init__(self, console=None, debug_mode=False, log_file: Optional[str] = None):
        self.console = console
        self.debug_mode = debug_mode

        # Error tracking
        self.error_counts = defaultdict(int)  # error_key -> count
        self.recent_errors = []  # Recent errors for pattern analysis
        self.suppressed_errors = defaultdict(int)  # error_key -> count of suppressed
        self.last_error_time = {}  # error_key -> last occurrence time

        # Alert routing with priorities
        self.alert_queue = []
        self.critical_alerts = []

        # Auto-recovery tracking
        self.recovery_attempts = defaultdict(int)
        self.recovery_successes = defaultdict(int)

        # Acknowledgement tracking
        self.acknowledged_errors: set = set()

        # Recovery systems (late-bound after initialization)
        self._redis_client = None

        self.logger = logging.getLogger('dispatch.errors')
        self.logger.setLevel(logging.DEBUG if debug_mode else logging.INFO)

        # Persistent error log only when configured
        log_file = log_file if log_file is not None else DispatchConfig.ERROR_LOG_FILE
        if log_file and not self.logger.handlers:
            handler = logging.FileHandler(log_file)
            handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(levelname)s - %(message)s'
            ))
            self.logger.addHandler(handler)

    def get_error_by_id(self, error_id: str) -> Optional[Dict[str, Any]]:
        """
        Find an error record by its ID.

        Args:
            error_id: The UUID of the error to find

        Returns:
            The error record if found, None otherwise
        """
        for error in self.recent_errors:
            if error.get('error_id') == error_id:
                return error
        return None

    def acknowledge_error(self, error_id: str) -> Dict[str, Any]:
        """
        Acknowledge an error by ID.

        Returns:
            Dict with status and error info
        """
        error_record = self.get_error_by_id(error_id)
        if error_record is None:
            return {
                'success': False,
                'error': f'Error ID not found: {error_id}',
                'error_id': error_id
            }

        self.acknowledged_errors.add(error_id)
        return {
            'success': True,
            'error_id': error_id,
            'error_category': error_record.get('category'),
            'error_message': error_record.get('message')
        }

    def handle_error(self,
                     error: Exception,
                     category: ErrorCategory,
                     severity: ErrorSeverity,
                     context: str = "",
                     operation: str = "",
                     suppress_duplicate_minutes: int = 5,
                     attempt_recovery: bool = True) -> bool:
        """
        Central error handling method with recovery attempts

        Args:
            error: The exception that occurred
            category: What type of fault this is
            severity: How severe this fault is
            context: Additional context (collection name, record id)
            operation: What operation was being performed
            suppress_duplicate_minutes: Suppress similar errors for this many minutes
            attempt_recovery: Whether to attempt auto-recovery

        Returns:
            bool: True if error was handled and should not propagate, False to re-raise
        """
        error_key = f"{category.value}_{type(error).__name__}"
        current_time = datetime.now()

        self.error_counts[error_key] += 1

        if self._should_suppress_error(error_key, current_time, suppress_duplicate_minutes):
            self.suppressed_errors[error_key] += 1
            return severity != ErrorSeverity.CRITICAL_STOP

        self.last_error_time[error_key] = current_time

        error_message = self._format_error_message(error, category, context, operation)

        recovery_succeeded = False
        if attempt_recovery and severity in [ErrorSeverity.HIGH_DEGRADE, ErrorSeverity.MEDIUM_ALERT]:
            recovery_succeeded = self.attempt_auto_recovery(category, error)

        self._route_error(error_message, category, severity, recovery_succeeded)

        error_id = str(uuid.uuid4())
        self.recent_errors.append({
            'error_id': error_id,
            'timestamp': current_time,
            'category': category.value,
            'severity': severity.value,
            'error_type': type(error).__name__,
            'message': str(error),
            'context': context,
            'operation': operation,
            'recovery_attempted': attempt_recovery,
            'recovery_succeeded': recovery_succeeded
        })

        # Keep only recent errors (last 100)
        if len(self.recent_errors) > 100:
            self.recent_errors.pop(0)

        if self.debug_mode and self.console and severity == ErrorSeverity.CRITICAL_STOP:
            self.console.print(f"[red dim]Traceback:\n{traceback.format_exc()}[/red dim]")

        self.logger.error(f"{category.value}: {error_message}", exc_info=self.debug_mode)

        # Only critical errors propagate
        return severity != ErrorSeverity.CRITICAL_STOP

    def attempt_auto_recovery(self, category: ErrorCategory, error: Exception) -> bool:
        """
        Attempt automatic recovery based on error category

        Returns:
            bool: True if recovery succeeded
        """
        self.recovery_attempts[category.value] += 1
        recovery_succeeded = False

        if category in (ErrorCategory.STORE_CONNECTION, ErrorCategory.CHANGE_NOTIFICATION):
            recovery_succeeded = self._recover_store_connection()

        if recovery_succeeded:
            self.recovery_successes[category.value] += 1

        return recovery_succeeded

    def register_recovery_systems(self, redis_client=None):
        """
        Register recovery systems for automatic error recovery.

        Called after ErrorHandler is initialized and the store client exists.

        Args:
            redis_client: RedisClient whose reconnect() is used for store faults
        """
        if redis_client:
            self._redis_client = redis_client
            self.logger.info("Registered redis_client for store recovery")

    def _recover_store_connection(self) -> bool:
        """Try one reconnect against the shared store."""
        if not self._redis_client:
            self.logger.debug("Redis client not registered, cannot recover store connection")
            return False

        try:
            success = self._redis_client.reconnect()
            if success:
                self.logger.info("Store reconnect succeeded during error recovery")
            return success
        except Exception as e:
            self.logger.error(f"Exception during store recovery: {e}")
            return False

    def _should_suppress_error(self, error_key: str, current_time: datetime, suppress_minutes: int) -> bool:
        """Check if this error should be suppressed due to recent similar errors"""
        if error_key not in self.last_error_time:
            return False

        last_occurrence = self.last_error_time[error_key]
        time_since_last = (current_time - last_occurrence).total_seconds()

        return time_since_last < (suppress_minutes * 60)

    def _format_error_message(self, error: Exception, category: ErrorCategory,
                              context: str, operation: str) -> str:
        """Format error message consistently with all metadata"""
        base_msg = str(error)
        if len(base_msg) > 100:
            base_msg = base_msg[:100] + "..."

        if context:
            base_msg = f"{context}: {base_msg}"

        if operation:
            base_msg = f"During {operation} - {base_msg}"

        error_key = f"{category.value}_{type(error).__name__}"
        count = self.error_counts.get(error_key, 1)
        if count > 1:
            base_msg += f" (#{count})"

        suppressed_count = self.suppressed_errors.get(error_key, 0)
        if suppressed_count > 0:
            base_msg += f" [+{suppressed_count} suppressed]"
            self.suppressed_errors[error_key] = 0  # Reset after showing

        return base_msg

    def _route_error(self, message: str, category: ErrorCategory, severity: ErrorSeverity,
                     recovery_succeeded: bool = False):
        """Route error to appropriate display location with recovery status"""
        color_map = {
            ErrorSeverity.CRITICAL_STOP: "red bold",
            ErrorSeverity.HIGH_DEGRADE: "red",
            ErrorSeverity.MEDIUM_ALERT: "yellow",
            ErrorSeverity.LOW_DEBUG: "dim yellow",
        }

        label_map = {
            ErrorCategory.STORE_CONNECTION: "STORE",
            ErrorCategory.STORE_LOAD: "LOAD",
            ErrorCategory.STORE_SAVE: "SAVE",
            ErrorCategory.DATA_SERIALIZATION: "DATA",
            ErrorCategory.BLOB_STORE: "BLOB",
            ErrorCategory.CHANGE_NOTIFICATION: "SYNC",
            ErrorCategory.REFRESH_HANDLER: "REFRESH",
            ErrorCategory.INTEGRITY: "INTEGRITY",
            ErrorCategory.GENERAL: "WARN",
        }

        color = color_map.get(severity, "dim")
        label = label_map.get(category, "WARN")

        recovery_indicator = " [recovered]" if recovery_succeeded else ""

        formatted_message = f"[{color}]{label}: {message}{recovery_indicator}[/{color}]"

        if severity == ErrorSeverity.CRITICAL_STOP:
            self.critical_alerts.append(formatted_message)
            if self.console:
                self.console.print(formatted_message)
        elif severity in [ErrorSeverity.HIGH_DEGRADE, ErrorSeverity.MEDIUM_ALERT]:
            self.alert_queue.append(formatted_message)
        elif severity == ErrorSeverity.LOW_DEBUG and self.debug_mode:
            self.alert_queue.append(formatted_message)

    def get_alerts_for_ui(self, max_alerts: int = 8, clear_after: bool = True) -> List[str]:
        """Get alerts for UI display"""
        all_alerts = self.critical_alerts + self.alert_queue

        alerts = all_alerts[-max_alerts:] if len(all_alerts) > max_alerts else all_alerts

        if clear_after:
            self.critical_alerts = []
            self.alert_queue = []

        return alerts

    def peek_alerts_for_ui(self, max_alerts: int = 8) -> List[str]:
        """Peek at alerts without clearing them"""
        return self.get_alerts_for_ui(max_alerts, clear_after=False)

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of error patterns for debugging"""
        total_errors = sum(self.error_counts.values())
        total_suppressed = sum(self.suppressed_errors.values())
        total_recoveries = sum(self.recovery_attempts.values())
        successful_recoveries = sum(self.recovery_successes.values())

        return {
            'total_errors': total_errors,
            'error_counts_by_type': dict(self.error_counts),
            'recent_error_count': len(self.recent_errors),
            'suppressed_count': total_suppressed,
            'categories_with_errors': sorted(set(e['category'] for e in self.recent_errors)),
            'most_common_errors': sorted(self.error_counts.items(), key=lambda x: x[1], reverse=True)[:5],
            'recovery_attempts': total_recoveries,
            'recovery_successes': successful_recoveries,
            'recent_patterns': self._analyze_error_patterns()
        }

    def _analyze_error_patterns(self) -> Dict[str, Any]:
        """Analyze recent error patterns for insights"""
        if not self.recent_errors:
            return {'pattern': 'No errors yet'}

        recent_10min = [e for e in self.recent_errors
                        if (datetime.now() - e['timestamp']).total_seconds() < 600]

        if len(recent_10min) > 10:
            return {'pattern': 'Error spike', 'count_10min': len(recent_10min)}

        category_counts = defaultdict(int)
        for error in self.recent_errors[-20:]:
            category_counts[error['category']] += 1

        worst_category = max(category_counts.items(), key=lambda x: x[1])
        if worst_category[1] > 5:
            return {'pattern': 'Repeated category', 'category': worst_category[0], 'count': worst_category[1]}

        return {'pattern': 'Normal', 'error_rate': 'Low'}

    def create_context_manager(self, category: ErrorCategory, severity: ErrorSeverity,
                               operation: str = "", context: str = ""):
        """Create a context manager for wrapping risky operations"""
        return ErrorContext(self, category, severity, operation, context)


class ErrorContext:
    """Context manager for handling errors in specific operations"""

    def __init__(self, error_handler: ErrorHandler, category: ErrorCategory,
                 severity: ErrorSeverity, operation: str = "", context: str = ""):
        self.error_handler = error_handler
        self.category = category
        self.severity = severity
        self.operation = operation
        self.context = context
        self.failed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.failed = True
            return self.error_handler.handle_error(
                error=exc_val,
                category=self.category,
                severity=self.severity,
                context=self.context,
                operation=self.operation
            )
        return False


_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get the process-wide ErrorHandler used when none is injected."""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler
