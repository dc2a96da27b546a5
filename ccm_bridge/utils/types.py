import pathlib as pl

FileType = str | pl.Path
# Command and its arguments, e.g. `["ccm", "node1", "start"]`
Argv = list[str]
