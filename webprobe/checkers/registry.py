from typing import List

from webprobe.checkers.base import BaseChecker
from webprobe.checkers.cors import CORS
from webprobe.checkers.lfi import LFI
from webprobe.checkers.mixed_content import MixedContent
from webprobe.checkers.open_redirect import OpenRedirect
from webprobe.checkers.sqli import SQLi
from webprobe.checkers.ssti import SSTI
from webprobe.checkers.xss import XSS


def default_detectors(extra: bool = False) -> List[BaseChecker]:
    """URL-level detectors first, then the parameter injectors."""
    return [
        CORS(), OpenRedirect(), MixedContent(),
        XSS(), SQLi(extra=extra), LFI(extra=extra), SSTI(),
    ]
