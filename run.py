#!/usr/bin/env python3
"""Run a backup without installing: ./run.py <container-name>"""
from lxdbackup.cli import main

if __name__ == '__main__':
    main()
