"""
Unified logging system for chunkwise
Provides consistent, structured logging across the CLI and embedding applications
"""
import sys
import os
from datetime import datetime
from typing import Optional, Dict, Any, Callable
from enum import Enum


class LogLevel(Enum):
    """Log levels with priority values"""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


class LogType(Enum):
    """Types of log messages for special handling"""
    GENERAL = "general"
    LLM_REQUEST = "llm_request"
    LLM_RESPONSE = "llm_response"
    TOKEN_USAGE = "token_usage"
    PROGRESS = "progress"
    CHUNK_INFO = "chunk_info"
    TRANSLATION_START = "translation_start"
    TRANSLATION_END = "translation_end"
    ERROR_DETAIL = "error_detail"


class Colors:
    """ANSI color codes for terminal output"""
    NO_COLOR = os.environ.get('NO_COLOR') is not None or not sys.stdout.isatty()

    YELLOW = '' if NO_COLOR else '\033[93m'       # headers, warnings
    WHITE = '' if NO_COLOR else '\033[97m'        # main text
    GRAY = '' if NO_COLOR else '\033[90m'         # technical info
    ORANGE = '' if NO_COLOR else '\033[38;5;214m' # prompt sent to the LLM
    GREEN = '' if NO_COLOR else '\033[92m'        # LLM output
    RED = '' if NO_COLOR else '\033[91m'          # errors
    ENDC = '' if NO_COLOR else '\033[0m'

    @classmethod
    def disable(cls):
        """Disable all colors"""
        cls.YELLOW = cls.WHITE = cls.GRAY = cls.ORANGE = cls.GREEN = cls.RED = cls.ENDC = ''


class UnifiedLogger:
    """
    Unified logger that provides consistent logging across all interfaces.

    Every call produces a structured entry ``{timestamp, level, type,
    message, data}`` that is handed to the optional stream and storage
    callbacks, which is how a front end receives the live log.
    """

    def __init__(self,
                 name: str = "chunkwise",
                 console_output: bool = True,
                 enable_colors: bool = True,
                 min_level: LogLevel = LogLevel.INFO,
                 stream_callback: Optional[Callable] = None,
                 storage_callback: Optional[Callable] = None):
        """
        Initialize the unified logger

        Args:
            name: Logger name/identifier
            console_output: Whether to output to console
            enable_colors: Whether to use colored output
            min_level: Minimum log level to display
            stream_callback: Callback receiving each entry as it is produced
            storage_callback: Callback for storing logs (e.g., in memory)
        """
        self.name = name
        self.console_output = console_output
        self.enable_colors = enable_colors
        self.min_level = min_level
        self.stream_callback = stream_callback
        self.storage_callback = storage_callback

        # Set when a TRANSLATION_START entry is logged, read by the end summary
        self.started_at: Optional[datetime] = None

        if not enable_colors:
            Colors.disable()

    def _format_timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def _format_console_message(self, level: LogLevel, message: str,
                                log_type: LogType = LogType.GENERAL,
                                data: Optional[Dict[str, Any]] = None) -> str:
        """Format message for console output"""
        timestamp = self._format_timestamp()

        level_colors = {
            LogLevel.DEBUG: Colors.GRAY,
            LogLevel.INFO: Colors.WHITE,
            LogLevel.WARNING: Colors.YELLOW,
            LogLevel.ERROR: Colors.RED,
            LogLevel.CRITICAL: Colors.RED
        }
        color = level_colors.get(level, Colors.WHITE)

        if log_type == LogType.LLM_REQUEST:
            return self._format_llm_request(data or {})
        elif log_type == LogType.LLM_RESPONSE:
            return self._format_llm_response(data or {})
        elif log_type == LogType.PROGRESS:
            return self._format_progress(data or {})
        elif log_type == LogType.TRANSLATION_START:
            return self._format_translation_start(message, data or {})
        elif log_type == LogType.TRANSLATION_END:
            return self._format_translation_end(message, data or {})
        elif log_type == LogType.ERROR_DETAIL:
            return self._format_error_detail(message, data or {})
        elif log_type == LogType.TOKEN_USAGE:
            return self._format_token_usage(data or {})
        else:
            level_str = f"[{level.name}]" if level != LogLevel.INFO else ""
            return f"{color}[{timestamp}] {level_str} {message}{Colors.ENDC}"

    def _format_llm_request(self, data: Dict[str, Any]) -> str:
        """Format LLM request with full details"""
        output = [f"{Colors.YELLOW}{'=' * 80}{Colors.ENDC}"]
        output.append(f"{Colors.YELLOW}[{self._format_timestamp()}] SENDING TO LLM{Colors.ENDC}")

        if 'chunk_index' in data:
            output.append(f"{Colors.YELLOW}Chunk: {data['chunk_index'] + 1}{Colors.ENDC}")
        if 'model' in data:
            output.append(f"{Colors.GRAY}Model: {data['model']}{Colors.ENDC}")

        output.append(f"\n{Colors.ORANGE}RAW PROMPT (INPUT):{Colors.ENDC}")
        if data.get('system_prompt'):
            output.append(f"{Colors.GRAY}[SYSTEM]{Colors.ENDC}")
            output.append(f"{Colors.ORANGE}{data['system_prompt']}{Colors.ENDC}")
        output.append(f"{Colors.ORANGE}{data.get('prompt', '')}{Colors.ENDC}")

        return '\n'.join(output)

    def _format_llm_response(self, data: Dict[str, Any]) -> str:
        """Format LLM response with full details"""
        output = [f"{Colors.GREEN}[{self._format_timestamp()}] LLM RESPONSE (OUTPUT){Colors.ENDC}"]

        if 'execution_time' in data:
            output.append(f"{Colors.GRAY}Execution time: {data['execution_time']:.2f} seconds{Colors.ENDC}")

        # Full response only in debug mode for console
        if self.min_level == LogLevel.DEBUG:
            output.append(f"\n{Colors.GREEN}RAW RESPONSE:{Colors.ENDC}")
            output.append(f"{Colors.GREEN}{data.get('response', '')}{Colors.ENDC}")

        return '\n'.join(output)

    def _format_progress(self, data: Dict[str, Any]) -> str:
        """Format progress summary"""
        percentage = data.get('percentage', 0)
        current = data.get('current', 0)
        total = data.get('total', 0)

        output = [f"\n{Colors.WHITE}PROGRESS: {current}/{total} chunks ({percentage:.1f}%){Colors.ENDC}"]

        bar_length = 30
        filled = int(bar_length * percentage / 100)
        bar = '█' * filled + '░' * (bar_length - filled)
        line = f"{Colors.WHITE}[{bar}] {percentage:.1f}%"
        if data.get('eta_seconds'):
            line += f" ETA {data['eta_seconds']}s"
        output.append(line + Colors.ENDC)

        return '\n'.join(output)

    def _format_translation_start(self, message: str, data: Dict[str, Any]) -> str:
        """Format translation start message"""
        output = [f"{Colors.YELLOW}TRANSLATION STARTED{Colors.ENDC}"]
        output.append(f"{Colors.WHITE}File Type: {data.get('file_type', 'Unknown')}{Colors.ENDC}")
        output.append(f"{Colors.WHITE}Languages: {data.get('source_lang', 'Unknown')} → {data.get('target_lang', 'Unknown')}{Colors.ENDC}")
        output.append(f"{Colors.GRAY}Model: {data.get('model', 'Unknown')}{Colors.ENDC}")
        if data.get('total_chunks'):
            output.append(f"{Colors.WHITE}Total Chunks: {data['total_chunks']}{Colors.ENDC}")

        return '\n'.join(output)

    def _format_translation_end(self, message: str, data: Dict[str, Any]) -> str:
        """Format translation end message"""
        output = [f"\n{Colors.WHITE}TRANSLATION COMPLETE{Colors.ENDC}"]

        if self.started_at:
            duration = datetime.now() - self.started_at
            output.append(f"{Colors.GRAY}Duration: {duration}{Colors.ENDC}")

        if 'output_file' in data:
            output.append(f"{Colors.WHITE}Output saved to: {data['output_file']}{Colors.ENDC}")

        if 'stats' in data:
            stats = data['stats']
            output.append(f"{Colors.WHITE}Completed chunks: {stats.get('completed', 0)}{Colors.ENDC}")
            if stats.get('failed', 0) > 0:
                output.append(f"{Colors.YELLOW}Failed chunks: {stats['failed']}{Colors.ENDC}")

        return '\n'.join(output)

    def _format_error_detail(self, message: str, data: Dict[str, Any]) -> str:
        """Format detailed error message"""
        output = [f"{Colors.RED}[{self._format_timestamp()}] ERROR: {message}{Colors.ENDC}"]

        if 'details' in data:
            output.append(f"{Colors.RED}Details: {data['details']}{Colors.ENDC}")
        if 'chunk' in data:
            output.append(f"{Colors.RED}Chunk: {data['chunk']}{Colors.ENDC}")

        return '\n'.join(output)

    def _format_token_usage(self, data: Dict[str, Any]) -> str:
        """Format token usage reported by the provider"""
        prompt_tokens = data.get('prompt_tokens', 0)
        response_tokens = data.get('response_tokens', 0)
        total_tokens = data.get('total_tokens', prompt_tokens + response_tokens)
        return (f"{Colors.GRAY}[TOKENS] prompt={prompt_tokens}, response={response_tokens}, "
                f"total={total_tokens}{Colors.ENDC}")

    def log(self, level: LogLevel, message: str,
            log_type: LogType = LogType.GENERAL,
            data: Optional[Dict[str, Any]] = None):
        """
        Main logging method

        Args:
            level: Log level
            message: Log message
            log_type: Type of log for special formatting
            data: Additional data for the log entry
        """
        if level.value < self.min_level.value:
            return

        if log_type == LogType.TRANSLATION_START:
            self.started_at = datetime.now()

        if self.console_output:
            try:
                console_msg = self._format_console_message(level, message, log_type, data)
                if console_msg:
                    print(console_msg, flush=True)
            except UnicodeEncodeError:
                # cp1252 consoles on Windows
                safe_message = message.encode('ascii', 'replace').decode('ascii')
                print(f"[{self._format_timestamp()}] {safe_message}", flush=True)

        log_entry = {
            'timestamp': datetime.now().isoformat(),
            'level': level.name,
            'type': log_type.value,
            'message': message,
            'data': data or {}
        }

        if self.stream_callback:
            self.stream_callback(log_entry)

        if self.storage_callback:
            self.storage_callback(log_entry)

    # Convenience methods
    def debug(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.DEBUG, message, log_type, data)

    def info(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.INFO, message, log_type, data)

    def warning(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.WARNING, message, log_type, data)

    def error(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.ERROR, message, log_type, data)

    def critical(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.CRITICAL, message, log_type, data)


# Global logger instance
_global_logger = None


def get_logger(name: str = "chunkwise", **kwargs) -> UnifiedLogger:
    """
    Get or create the global logger instance

    Args:
        name: Logger name
        **kwargs: Additional arguments for UnifiedLogger

    Returns:
        UnifiedLogger instance
    """
    global _global_logger
    if _global_logger is None:
        _global_logger = UnifiedLogger(name, **kwargs)
    else:
        if 'stream_callback' in kwargs:
            _global_logger.stream_callback = kwargs['stream_callback']
        if 'storage_callback' in kwargs:
            _global_logger.storage_callback = kwargs['storage_callback']
        if 'min_level' in kwargs:
            _global_logger.min_level = kwargs['min_level']
    return _global_logger


def setup_cli_logger(enable_colors: bool = True) -> UnifiedLogger:
    """Setup logger for CLI usage"""
    # Import here to avoid circular dependencies
    from chunkwise.config import DEBUG_MODE

    return get_logger(
        console_output=True,
        enable_colors=enable_colors,
        min_level=LogLevel.DEBUG if DEBUG_MODE else LogLevel.INFO
    )

