"""Run the helm-x command line tool with `python -m helm_x`."""

from helm_x.tool.helm_x import main

if __name__ == "__main__":
    main()
