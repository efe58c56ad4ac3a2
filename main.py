import logging

from entry_timing.orchestrator import main as run_orchestrator


logger = logging.getLogger(__name__)


def main():
    logger.info("Starting entry-timing full run")
    run_orchestrator(["--task", "full_run"])


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
