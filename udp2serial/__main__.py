"""Entry point: resolve configuration and run the UDP-to-serial bridge."""

import sys

from udp2serial.bridge import run_bridge
from udp2serial.config import (
    ConfigError,
    ExitCode,
    HelpRequested,
    print_usage,
    report_error,
    resolve,
)
from udp2serial.settings import DEFAULT_SETTINGS_PATH, ensure_settings_file, load_settings


def main(argv=None, settings_path=DEFAULT_SETTINGS_PATH) -> int:
    """Resolve the configuration and run the bridge; returns the process exit code."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        ensure_settings_file(settings_path)
        config = resolve(args, load_settings(settings_path))
    except HelpRequested:
        print_usage()
        return ExitCode.HELP_DISPLAY
    except ConfigError as e:
        report_error(e)
        return e.exit_code
    try:
        run_bridge(config, verbose=config.verbose)
    except KeyboardInterrupt:
        pass
    return ExitCode.SUCCESS


if __name__ == "__main__":
    sys.exit(main())
