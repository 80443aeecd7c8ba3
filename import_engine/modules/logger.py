import logging
import os
import datetime
import re


class ImportEngineLogger:
    """
    Process-wide logger for the import engine.
    Logs format: datetime : component : level : log details
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ImportEngineLogger, cls).__new__(cls)
            cls._instance._setup_logger()
        return cls._instance

    def _setup_logger(self):
        """Set up the logger with the required format"""
        self.logger = logging.getLogger('import_engine')

        # Read log level from environment variable, default to INFO
        log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()

        log_level_map = {
            'DEBUG': logging.DEBUG,
            'INFO': logging.INFO,
            'WARNING': logging.WARNING,
            'ERROR': logging.ERROR,
            'CRITICAL': logging.CRITICAL
        }
        log_level = log_level_map.get(log_level_str, logging.INFO)
        self.logger.setLevel(log_level)

        # Prevent duplicate log entries
        if self.logger.hasHandlers():
            self.logger.handlers.clear()

        log_file = os.getenv('IMPORT_ENGINE_LOG_FILE') or os.path.join(
            os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'import_engine.log'
        )

        file_handler = logging.FileHandler(log_file, delay=True)
        file_handler.setLevel(log_level)

        # Custom format is applied in _format_message
        formatter = logging.Formatter('%(message)s')
        file_handler.setFormatter(formatter)
        self.logger.addHandler(file_handler)

        self.filter_patterns = []

    def _should_log(self, message):
        """Check if the message should be logged based on filter patterns"""
        for pattern in self.filter_patterns:
            if re.search(pattern, message):
                return False
        return True

    def _get_component(self, message):
        """Extract the bracketed component prefix, e.g. '[Chunker] ...'"""
        match = re.match(r'\[(\w+)\]', message)
        if match:
            return match.group(1)
        return 'engine'

    def _format_message(self, level, message):
        """Format the log message according to requirements"""
        timestamp = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        component = self._get_component(message)
        return f"{timestamp} : {component} : {level} : {message}"

    def _render(self, message, args, context):
        if args:
            message = message % args if '%' in message else message.format(*args)
        if context:
            details = ", ".join(f"{key}={value}" for key, value in context.items())
            message = f"{message} ({details})"
        return message

    def debug(self, message, *args, **context):
        """Log a debug message. Keyword arguments are appended as key=value pairs."""
        message = self._render(message, args, context)
        if self._should_log(message):
            self.logger.debug(self._format_message('debug', message))

    def info(self, message, *args, **context):
        """Log an info message. Keyword arguments are appended as key=value pairs."""
        message = self._render(message, args, context)
        if self._should_log(message):
            self.logger.info(self._format_message('info', message))

    def warning(self, message, *args, **context):
        """Log a warning message. Keyword arguments are appended as key=value pairs."""
        message = self._render(message, args, context)
        if self._should_log(message):
            self.logger.warning(self._format_message('warning', message))

    def error(self, message, *args, **context):
        """
        Log an error message.
        exc_info is accepted for call-site compatibility; tracebacks are not written.
        """
        context.pop('exc_info', None)
        message = self._render(message, args, context)
        if self._should_log(message):
            self.logger.error(self._format_message('error', message), exc_info=False)

    def add_filter_pattern(self, pattern):
        """Add a regex pattern to filter out log messages"""
        self.filter_patterns.append(pattern)

    def remove_filter_pattern(self, pattern):
        """Remove a regex pattern from the filter"""
        if pattern in self.filter_patterns:
            self.filter_patterns.remove(pattern)


# Create a singleton instance
logger = ImportEngineLogger()


def debug(message, *args, **context):
    """Log a debug message. Supports format strings: debug("format %s", arg)"""
    logger.debug(message, *args, **context)


def info(message, *args, **context):
    """Log an info message. Supports format strings: info("format %s", arg)"""
    logger.info(message, *args, **context)


def warning(message, *args, **context):
    """Log a warning message. Supports format strings: warning("format %s", arg)"""
    logger.warning(message, *args, **context)


def error(message, *args, exc_info=False, **context):
    """Log an error message. Supports format strings: error("format %s", arg)"""
    logger.error(message, *args, **context)


def exception(message):
    # Use error instead of exception to avoid traceback
    logger.error(message)


def add_filter_pattern(pattern):
    logger.add_filter_pattern(pattern)


def remove_filter_pattern(pattern):
    logger.remove_filter_pattern(pattern)
