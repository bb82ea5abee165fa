"""Conversions between snake_case schema names and PascalCase column names."""


def to_pascal_case(name: str) -> str:
    """Convert ``weapon_id`` to ``WeaponId``.

    Underscores are dropped and the following character is upper-cased.
    Names that are already PascalCase pass through unchanged.
    """
    if not name:
        return name
    parts: list[str] = []
    capitalize_next = True
    for ch in name:
        if ch == "_":
            capitalize_next = True
            continue
        parts.append(ch.upper() if capitalize_next else ch)
        capitalize_next = False
    return "".join(parts)


def to_snake_case(name: str) -> str:
    """Convert ``BgmAssetMaster`` to ``bgm_asset_master``.

    Acronym runs stay together: ``BGM`` becomes ``bgm`` and ``HTTPServer``
    becomes ``http_server``.
    """
    out: list[str] = []
    for i, ch in enumerate(name):
        if ch.isupper():
            if i > 0:
                prev_upper = name[i - 1].isupper()
                next_lower = i + 1 < len(name) and name[i + 1].islower()
                if not prev_upper or next_lower:
                    out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)
