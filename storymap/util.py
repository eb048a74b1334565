import sys
from pathlib import Path

import yaml


def print_info(message):
    sys.stderr.write(message + '\n')


def print_warning(message):
    sys.stderr.write('WARNING: ' + message + '\n')


def print_error(message):
    sys.stderr.write('ERROR: ' + message + '\n')


def load_yaml(path):
    with open(Path(path), encoding='utf-8') as yaml_file:
        return yaml.safe_load(yaml_file)


def write_text(path, text):
    with open(Path(path), 'w', encoding='utf-8') as output_file:
        output_file.write(text)
