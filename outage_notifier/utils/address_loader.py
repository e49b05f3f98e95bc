"""Address loader for the monitored addresses file"""
from pathlib import Path
from typing import List

from ..storage.models import Address
from .logger import setup_logger

logger = setup_logger(__name__)

FIELD_COUNT = 5


def parse_address_line(line: str, line_num: int = 0) -> Address:
    """
    Parse one 'key | name | city | street | house' line
    
    Raises:
        ValueError: If the line does not have exactly five non-empty fields
    """
    parts = [part.strip() for part in line.split('|')]
    if len(parts) != FIELD_COUNT:
        raise ValueError(
            f"Line {line_num}: expected {FIELD_COUNT} '|'-separated fields, got {len(parts)}: {line}"
        )
    if not all(parts):
        raise ValueError(f"Line {line_num}: empty field in: {line}")
    
    key, name, city, street, house_num = parts
    return Address(key=key, name=name, city=city, street=street, house_num=house_num)


def load_addresses(file_path: str) -> List[Address]:
    """
    Load monitored addresses
    
    Expected file format, one address per line:
    key | Display name | City | Street | House number
    
    Blank lines and lines starting with '#' are ignored.
    
    Args:
        file_path: Path to the addresses file
    
    Returns:
        List of addresses in file order
    
    Raises:
        ValueError: If the file is missing, empty, malformed or repeats a key
    """
    file = Path(file_path)
    
    if not file.exists():
        raise ValueError(f"Addresses file not found: {file_path}")
    
    addresses: List[Address] = []
    seen = set()
    with open(file, 'r', encoding='utf-8') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            
            # Skip empty lines and comments
            if not line or line.startswith('#'):
                continue
            
            address = parse_address_line(line, line_num)
            if address.key in seen:
                raise ValueError(f"Line {line_num}: duplicate address key '{address.key}'")
            seen.add(address.key)
            addresses.append(address)
            logger.debug(f"Loaded address '{address.key}' from line {line_num}")
    
    if not addresses:
        raise ValueError(f"No addresses defined in {file_path}")
    
    logger.info(f"Loaded {len(addresses)} address(es) from {file_path}")
    return addresses
