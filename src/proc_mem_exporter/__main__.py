"""Allow running as `python -m proc_mem_exporter`."""

from proc_mem_exporter.cli import main

if __name__ == "__main__":
    main()
