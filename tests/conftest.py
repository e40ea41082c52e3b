import pytest


class ScriptedRng:
    """Stands in for random.Random: randint returns the scripted values in order.

    Once the script runs out every draw is the lowest face.
    """

    def __init__(self, values=()):
        self.values = list(values)
        self.calls = []

    def script(self, *values):
        self.values.extend(values)

    def randint(self, a, b):
        self.calls.append((a, b))
        if not self.values:
            return a
        value = self.values.pop(0)
        assert a <= value <= b, f"scripted draw {value} outside [{a}, {b}]"
        return value


@pytest.fixture
def rng():
    return ScriptedRng()
