"""Harness logger. Everything goes to the tests.log file of the scenario, and findings are also
written on the pytest terminal, with the stdout level.
"""

import logging

from _pytest.terminal import TerminalReporter


DEBUG_LEVEL_STDOUT = 100

# third party loggers that would flood tests.log with one line per proxied request
NOISY_LOGGERS = ("requests", "urllib3", "azure", "mitmproxy", "hpack")


def get_log_formatter() -> logging.Formatter:
    return logging.Formatter("%(asctime)s.%(msecs)03d %(levelname)-8s %(message)s", "%H:%M:%S")


class Logger(logging.Logger):
    terminal: TerminalReporter

    def stdout(self, message: str, *args) -> None:  # noqa: ANN002
        """Log the message, and print it on the terminal, before the test results"""

        if not self.isEnabledFor(DEBUG_LEVEL_STDOUT):
            return

        self._log(DEBUG_LEVEL_STDOUT, message, args)  # pylint: disable=protected-access

        if hasattr(self, "terminal"):
            self.terminal.write_line(message)
            self.terminal.flush()
        else:
            # the pytest session has not started yet
            print(message)  # noqa: T201


logging.setLoggerClass(Logger)
logging.addLevelName(DEBUG_LEVEL_STDOUT, "STDOUT")

for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(logging.WARNING)


def get_logger(name: str = "harness") -> Logger:
    result: Logger = logging.getLogger(name)  # type: ignore[assignment]
    result.setLevel(logging.DEBUG)

    return result


logger = get_logger()
