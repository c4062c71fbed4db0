"""Race labels and matchup strings."""

# Order used for matchup keys, e.g. "PvT" rather than "TvP".
RACE_ORDER = "PTZR"

# Race labels as the web API writes them in replay_player_races.
UPSTREAM_LABELS = {"P": "protoss", "T": "terran", "Z": "zerg", "R": "random"}

DISPLAY_LABELS = {"P": "Protoss", "T": "Terran", "Z": "Zerg", "R": "Random"}


def initial(raw: str) -> str:
    """'protoss' -> 'P'. Unknown labels give '?'."""
    raw = (raw or "").strip().lower()
    for letter, label in UPSTREAM_LABELS.items():
        if raw == label or raw == letter.lower():
            return letter
    return "?"


def normalize_label(raw: str) -> str:
    """Canonical display label; unknown input is returned trimmed."""
    letter = initial(raw)
    if letter == "?":
        return (raw or "").strip()
    return DISPLAY_LABELS[letter]


def parse_matchup(text: str) -> tuple[str, str] | None:
    """Parse 'PvT', 'p,t', 'Protoss vs Zerg', 'zvz' into a pair of race letters."""
    if not text or not text.strip():
        return None
    s = text.strip().lower()
    for sep in (" vs ", ",", "/", "v"):
        if sep in s:
            left, right = s.split(sep, 1)
            a, b = initial(left), initial(right)
            if a != "?" and b != "?":
                return a, b
    letters = [c for c in s if c.isalpha()]
    if len(letters) == 2:
        a, b = initial(letters[0]), initial(letters[1])
        if a != "?" and b != "?":
            return a, b
    return None


def matchup_orderings(pair: tuple[str, str]) -> frozenset[str]:
    """Both race-list strings a candidate may carry for this matchup."""
    a, b = UPSTREAM_LABELS[pair[0]], UPSTREAM_LABELS[pair[1]]
    return frozenset({f"{a},{b}", f"{b},{a}"})


def matchup_key(pair: tuple[str, str] | None) -> str:
    """Order-independent directory label: ('T', 'P') -> 'PvT'. None -> 'All'."""
    if pair is None:
        return "All"
    a, b = sorted(pair, key=RACE_ORDER.index)
    return f"{a}v{b}"
