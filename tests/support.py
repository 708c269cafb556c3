from minicasino.models import User


class ScriptedRandom:
    """Random source that replays the given draws in order."""

    def __init__(self, *draws):
        self.draws = list(draws)

    def _next(self):
        if not self.draws:
            raise AssertionError("ran out of scripted draws")
        return self.draws.pop(0)

    def choice(self, seq):
        value = self._next()
        assert value in seq, f"{value!r} is not a possible draw"
        return value

    def randint(self, a, b):
        value = self._next()
        assert a <= value <= b
        return value

    def randrange(self, stop):
        value = self._next()
        assert 0 <= value < stop
        return value


def make_user(repo, username="alice"):
    return repo.insert_user(User(id=0, username=username, name=username))
