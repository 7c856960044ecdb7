# python -m shutterbox
from shutterbox.cli import main

if __name__ == "__main__":
    main()
