def parse_bool(val: str) -> bool:
    match val.lower():
        case "true" | "1" | "yes":
            return True
        case "false" | "0" | "no":
            return False
    raise ValueError(f"Unparseable boolean value: {val!r}")
