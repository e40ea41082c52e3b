import shlex
import sys

from spells.spells_runtime import ScriptRunner
from spells.spells_printer import Printer
from spells import spells_file

NOSAVE_ARGS = ("!", "nosave")


def read_line(prompt: str) -> str:
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return sys.stdin.readline()


class Session:
    """REPL state: the runner plus the tome path that `.save` and `.load` default to."""

    def __init__(self, runner: ScriptRunner):
        self.runner = runner
        self.printer = Printer()
        self.save_path = None

    def show(self, result):
        for effect in result.side_effects:
            if effect.get('topics') == ['stdout']:
                print(effect.get('message', ''))
        if result.status == 'error':
            print(result.format_error(), file=sys.stderr)
            for extra in result.errors[1:]:
                print(extra, file=sys.stderr)
            return
        line = self.printer.render(result)
        if line:
            print(line)

    def load_file(self, target: str) -> bool:
        """Loads a tome on top of the current environment."""
        try:
            text, path = spells_file.read_tome(target)
        except OSError as e:
            print(f"Error loading {target}: {e}", file=sys.stderr)
            return False
        result = self.runner.load_tome(text)
        if result.status == 'error':
            self.show(result)
        print(f"Loaded {path}")
        return True

    # --- dot commands; each returns False to end the session ---

    def command(self, line: str) -> bool:
        try:
            words = shlex.split(line[1:])
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return True
        if not words:
            print("Command syntax: .<command> argument argument", file=sys.stderr)
            return True
        name, args = words[0], words[1:]
        if len(args) > 1:
            print("Expected at most one argument.", file=sys.stderr)
            return True
        arg = args[0] if args else None
        match name:
            case "save":
                self.save(arg)
            case "load":
                self.load(arg)
            case "export":
                if arg is None:
                    print("Usage: .export <file.json|file.yaml>", file=sys.stderr)
                else:
                    try:
                        print(f"Exported to {spells_file.export_constants(self.runner, arg)}")
                    except (OSError, ValueError) as e:
                        print(f"Error: {e}", file=sys.stderr)
            case "exit":
                return self.exit(arg)
            case _:
                print(f"Unknown command: {name}", file=sys.stderr)
        return True

    def save(self, target=None) -> bool:
        try:
            path = spells_file.save_tome(self.runner, target or self.save_path)
        except (OSError, RuntimeError) as e:
            print(f"Error saving: {e}", file=sys.stderr)
            return False
        self.save_path = path
        print(f"Saved to {path}")
        return True

    def load(self, target=None):
        target = target or self.save_path
        if target is None:
            target = read_line("Title or path: ").strip()
            if not target:
                return
        try:
            runner, result, path = spells_file.load_tome(target, rng=self.runner.evaluator.rng)
        except (OSError, RuntimeError) as e:
            print(f"Error loading {target}: {e}", file=sys.stderr)
            return
        if result.status == 'error':
            self.show(result)
        self.runner = runner
        self.save_path = path
        print(f"Loaded {path}")

    def exit(self, arg=None) -> bool:
        if arg is not None and arg not in NOSAVE_ARGS:
            print("Usage: exit [nosave]", file=sys.stderr)
            return True
        if arg is None and not self.save():
            return True
        if self.save_path is not None:
            try:
                spells_file.write_cache(self.save_path)
            except (OSError, RuntimeError) as e:
                print(f"Error saving cache: {e}", file=sys.stderr)
        return False


def main(argv=None):
    """Start the interactive REPL, loading any tomes named on the command line."""
    argv = sys.argv[1:] if argv is None else argv

    print("spells v0.1")
    print("Type 'exit' or press Ctrl+D to save and quit, 'exit nosave' to quit without saving.")

    session = Session(ScriptRunner())
    try:
        cached = spells_file.read_cache()
    except (OSError, RuntimeError) as e:
        print(f"Error loading cache: {e}", file=sys.stderr)
        cached = None
    if cached:
        session.load(cached)
    for target in argv:
        session.load_file(target)

    while True:
        try:
            raw = read_line("> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line.startswith("."):
                if not session.command(line):
                    break
                continue
            words = line.split()
            if words[0] == "exit" and len(words) <= 2:
                if not session.exit(words[1] if len(words) > 1 else None):
                    break
                continue

            session.show(session.runner.evaluate_line(line))

        except EOFError:
            # end of input is an exit that saves
            print()
            session.exit(None)
            print("Exiting.")
            break


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
