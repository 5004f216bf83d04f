"""
Main CLI entry point for Craftus
"""

import click

from .craft import craft_group, generate_command


@click.group()
@click.version_option(version='0.1.0')
def cli():
    """
    Craftus - AI craft generation and step-by-step dissection

    Describe a craft, get a photoreal master image, then break it down into
    materials and illustrated build steps.
    """
    pass


# Register command groups
cli.add_command(craft_group)
cli.add_command(generate_command, name='generate')


if __name__ == '__main__':
    cli()
