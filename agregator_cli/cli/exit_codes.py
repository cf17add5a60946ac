"""Standard exit codes for Agregator CLI.

Scripts and cron wrappers rely on these to tell failures apart.
"""


class ExitCode:
    """Standard exit codes for Agregator CLI.

    These codes follow common Unix conventions where possible:
    - 0: Success
    - 1: General error
    - 2: Command-line usage error (reported by Typer itself)
    - 130: Script terminated by Ctrl+C (SIGINT)

    Agregator-specific codes start at 3:
    - 3: Configuration error
    - 4: Scraper error
    - 5: Job error
    - 6: Store unavailable
    - 7: Incomplete sweep
    - 8: Invalid argument
    - 9: Not found
    - 10: Invalid transition
    """

    SUCCESS = 0

    GENERAL_ERROR = 1

    USAGE_ERROR = 2  # Raised by Click for bad options and arguments

    CONFIGURATION_ERROR = 3
    SCRAPER_ERROR = 4
    JOB_ERROR = 5
    STORE_UNAVAILABLE = 6
    SWEEP_INCOMPLETE = 7
    INVALID_ARGUMENT = 8
    NOT_FOUND = 9
    INVALID_TRANSITION = 10

    CANCELLED = 130  # Ctrl+C (SIGINT = 2)

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the name of an exit code."""
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.USAGE_ERROR: "USAGE_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.SCRAPER_ERROR: "SCRAPER_ERROR",
            cls.JOB_ERROR: "JOB_ERROR",
            cls.STORE_UNAVAILABLE: "STORE_UNAVAILABLE",
            cls.SWEEP_INCOMPLETE: "SWEEP_INCOMPLETE",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.NOT_FOUND: "NOT_FOUND",
            cls.INVALID_TRANSITION: "INVALID_TRANSITION",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")

    @classmethod
    def get_description(cls, code: int) -> str:
        """Get the description of an exit code."""
        descriptions = {
            cls.SUCCESS: "Operation completed successfully",
            cls.GENERAL_ERROR: "An unexpected error occurred",
            cls.USAGE_ERROR: "Invalid command-line usage",
            cls.CONFIGURATION_ERROR: "Configuration error or invalid config file",
            cls.SCRAPER_ERROR: "Scraper loading or execution error",
            cls.JOB_ERROR: "Job definition or execution error",
            cls.STORE_UNAVAILABLE: "Database unreachable or locked",
            cls.SWEEP_INCOMPLETE: "Status sweep left some events unprocessed",
            cls.INVALID_ARGUMENT: "Invalid command-line argument",
            cls.NOT_FOUND: "Requested resource not found",
            cls.INVALID_TRANSITION: "Event status does not allow this change",
            cls.CANCELLED: "Operation cancelled by user",
        }
        return descriptions.get(code, f"Unknown exit code: {code}")
