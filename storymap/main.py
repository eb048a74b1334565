import argparse
import sys
import traceback
from pathlib import Path

from storymap.config import load_config
from storymap.errors import StoryMapError
from storymap.loader import dump_document, load_document
from storymap.util import print_error
from storymap.version import __version__


def main():
    try:
        exit_code = cli(sys.argv[1:])
        sys.exit(exit_code)
    except Exception:
        print_error(traceback.format_exc())
        sys.exit(1)


def cli(raw_arguments):
    exit_code = 0
    args = parse_arguments(raw_arguments)
    if args.command is None:
        parse_arguments(['-h'])
    elif args.command == 'validate':
        from storymap.validate import story_map_validate_command
        exit_code = story_map_validate_command(
            [Path(f) for f in args.files],
            quiet=args.quiet,
        )
    else:
        exit_code = handle_document_command(args)
    return exit_code


def handle_document_command(args):
    """Handle the commands that work on a single loaded story map."""
    try:
        config = load_config(args.config)
        doc = load_document(args.file)

        if args.command == 'grid':
            from storymap.compose import story_map_grid_command
            return story_map_grid_command(doc, config)

        elif args.command == 'renumber':
            from storymap.session import story_map_renumber_command
            output = Path(args.file) if args.in_place else args.output
            return story_map_renumber_command(
                doc,
                serializer=dump_document,
                output_path=Path(output) if output else None,
                config=config,
                backup=args.in_place,
            )

        elif args.command == 'options':
            from storymap.options import story_map_options_command
            return story_map_options_command(doc, config)

        else:
            print("Unknown command. Use: validate, grid, renumber, options")
            return 1

    except StoryMapError as e:
        print_error(str(e))
        return 2


def parse_arguments(arguments):
    parser = argparse.ArgumentParser(prog='storymap')
    parser.add_argument('--version', action='version', version=__version__)
    subparsers = parser.add_subparsers(dest='command', metavar='<command>')

    validate_help = 'check story map files for missing fields and broken references'
    validate_parser = subparsers.add_parser('validate', help=validate_help)
    validate_parser.add_argument('files', nargs='+', help='Story map YAML files')
    validate_parser.add_argument('-q', '--quiet', action='store_true', help='Only show summary')

    grid_help = 'print the story grid (columns, version bands, placed stories)'
    grid_parser = subparsers.add_parser('grid', help=grid_help)
    grid_parser.add_argument('file', help='Story map YAML file')
    grid_parser.add_argument('-c', '--config', help='Path to storymap config file')

    renumber_help = 'renumber story_mapping sequences and backbone_x_version_sort ranks'
    renumber_parser = subparsers.add_parser('renumber', help=renumber_help)
    renumber_parser.add_argument('file', help='Story map YAML file')
    renumber_parser.add_argument('-c', '--config', help='Path to storymap config file')
    renumber_output = renumber_parser.add_mutually_exclusive_group()
    renumber_output.add_argument('-o', '--output', help='Write result to this file')
    renumber_output.add_argument('--in-place', action='store_true', help='Overwrite the input file (a .bak_sort_<ts> copy is kept)')

    options_help = 'print persona, version and backbone option lists'
    options_parser = subparsers.add_parser('options', help=options_help)
    options_parser.add_argument('file', help='Story map YAML file')
    options_parser.add_argument('-c', '--config', help='Path to storymap config file')

    return parser.parse_args(arguments)


if __name__ == '__main__':
    main()
