"""
Command-line interface: the Typer app, console formatters and the live
progress display.
"""
