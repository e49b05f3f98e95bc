"""Schedule fetcher for the DTEK shutdowns page"""
from typing import List, Optional, Protocol, Tuple
import requests
from bs4 import BeautifulSoup

from ..storage.models import Address, RawProbe, ScheduleDay
from ..utils.logger import setup_logger
from .schedule_parser import ScheduleLayoutError

logger = setup_logger(__name__)

DEFAULT_URL = "https://www.dtek-kem.com.ua/ua/shutdowns"
GROUP_PREFIX = "Черга "

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


class ProbeError(Exception):
    """Transient failure while talking to the schedule source"""


class ScheduleNotPublishedError(Exception):
    """The requested day's schedule is not published yet"""


class ScheduleFetcher(Protocol):
    """Source of raw schedules for a single address"""
    
    def open_session(self):
        ...
    
    def probe(self, session, address: Address, day: ScheduleDay) -> RawProbe:
        ...
    
    def close_session(self, session) -> None:
        ...


def clean_group_name(raw: str) -> str:
    """Strip the source prefix so one bucket always has one name"""
    name = " ".join((raw or "").split())
    if name.startswith(GROUP_PREFIX):
        name = name[len(GROUP_PREFIX):]
    return name.strip()


def _read_table(table) -> List[Tuple[str, str]]:
    """Pair every header label of a schedule table with its cell status tag"""
    labels = [div.get_text(strip=True) for div in table.select("thead th[scope=col] div")]
    cells = table.select("tbody td[class^=cell-]")
    
    if not labels:
        raise ScheduleLayoutError("Schedule table has no slot headers")
    if len(labels) != len(cells):
        raise ScheduleLayoutError(
            f"Schedule table has {len(labels)} slot headers but {len(cells)} cells"
        )
    
    return [(label, " ".join(cell.get("class", []))) for label, cell in zip(labels, cells)]


def parse_schedule_page(html: str, day: ScheduleDay = ScheduleDay.TODAY) -> RawProbe:
    """
    Extract the group name and raw slots from a schedule page
    
    Args:
        html: Page HTML returned for one address
        day: TODAY reads the active table, TOMORROW the first inactive one
    
    Returns:
        RawProbe with the cleaned group name and (slot label, status tag) pairs
    
    Raises:
        ScheduleLayoutError: If the page structure is not recognized
        ScheduleNotPublishedError: If tomorrow's table is not on the page yet
    """
    soup = BeautifulSoup(html, 'html.parser')
    
    group_span = soup.select_one("#group-name span")
    group_name = clean_group_name(group_span.get_text()) if group_span else ""
    if not group_name:
        raise ScheduleLayoutError("Group name element '#group-name span' not found")
    
    tables = soup.select(".discon-fact-table")
    if not tables:
        raise ScheduleLayoutError("No '.discon-fact-table' schedule tables found")
    
    active = [t for t in tables if "active" in t.get("class", [])]
    inactive = [t for t in tables if "active" not in t.get("class", [])]
    
    if day == ScheduleDay.TODAY:
        table = active[0] if active else tables[0]
    else:
        if not inactive:
            raise ScheduleNotPublishedError("Next day schedule is not published yet")
        table = inactive[0]
    
    return RawProbe(group_name=group_name, slots=_read_table(table))


class DtekScheduleFetcher:
    """HTTP fetcher for the DTEK shutdowns page"""
    
    def __init__(self, url: str = DEFAULT_URL, timeout: int = 30):
        """
        Initialize schedule fetcher
        
        Args:
            url: URL of the shutdowns page
            timeout: Per-request timeout in seconds
        """
        self.url = url
        self.timeout = timeout
    
    def open_session(self) -> requests.Session:
        """
        Open an HTTP session and pick up the page's CSRF token
        
        Raises:
            ProbeError: If the page cannot be loaded
        """
        session = requests.Session()
        session.headers.update({"User-Agent": USER_AGENT})
        try:
            response = session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            session.close()
            raise ProbeError(f"Failed to open schedule page: {e}") from e
        
        token = self._find_csrf_token(response.text)
        if token:
            session.headers.update({"X-CSRF-Token": token})
        return session
    
    def probe(self, session: requests.Session, address: Address, day: ScheduleDay) -> RawProbe:
        """
        Submit the address form and parse the returned schedule
        
        Raises:
            ProbeError: On network or HTTP failures
            ScheduleLayoutError: If the returned page is not recognized
            ScheduleNotPublishedError: If tomorrow's table is missing
        """
        logger.debug(f"Probing {address.key} ({address.city}, {address.street}, {address.house_num})")
        form = {
            "city": address.city,
            "street": address.street,
            "house_num": address.house_num,
        }
        try:
            response = session.post(self.url, data=form, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ProbeError(f"Failed to fetch schedule for {address.key}: {e}") from e
        
        return parse_schedule_page(response.text, day)
    
    def close_session(self, session: requests.Session) -> None:
        """Close the HTTP session"""
        session.close()
    
    def _find_csrf_token(self, html: str) -> Optional[str]:
        soup = BeautifulSoup(html, 'html.parser')
        meta = soup.find("meta", attrs={"name": "csrf-token"})
        if meta and meta.get("content"):
            return meta["content"]
        return None
