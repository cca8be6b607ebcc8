def ip_no_cidr(ip: str) -> str:
    """Strip the prefix length from an address ("10.0.0.2/24" -> "10.0.0.2")."""
    return ip.split("/", 1)[0].strip()


def host_port(ip: str, port: int) -> str:
    host = ip_no_cidr(ip)
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
