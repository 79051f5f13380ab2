# Reads a file asynchronously and writes an upper-cased copy next to it.
# Usage: loom run examples/copy_file.py SOURCE DESTINATION

from loom.errors import GuestError


def main(vm):
    File = vm.import_variable("io", "File")
    Process = vm.import_variable("os", "Process")

    arguments = Process.arguments()
    if len(arguments) != 2:
        vm.write("usage: copy_file.py SOURCE DESTINATION\n")
        return

    source, destination = arguments
    try:
        contents = yield from File.read(source)
    except GuestError as error:
        vm.write(f"could not read {source}: {error}\n")
        return

    written = yield from File.write(destination, contents.upper())
    vm.write(f"wrote {written} characters to {destination}\n")
