from postguard.security.detectors.base import BaseDetector
from postguard.security.detectors.sql_injection import SQLInjectionDetector
from postguard.security.detectors.xss import XSSDetector
from postguard.security.detectors.path_traversal import PathTraversalDetector
from postguard.security.detectors.command_injection import CommandInjectionDetector
from postguard.security.detectors.ldap_injection import LDAPInjectionDetector
from postguard.security.detectors.xml_injection import XMLInjectionDetector
from postguard.security.detectors.nosql_injection import NoSQLInjectionDetector
from postguard.security.detectors.ssrf import SSRFDetector
from postguard.security.detectors.xxe import XXEDetector
from postguard.security.detectors.prototype_pollution import PrototypePollutionDetector


def default_signature_library() -> list[BaseDetector]:
    return [
        SQLInjectionDetector(),
        XSSDetector(),
        PathTraversalDetector(),
        CommandInjectionDetector(),
        LDAPInjectionDetector(),
        XMLInjectionDetector(),
        NoSQLInjectionDetector(),
        SSRFDetector(),
        XXEDetector(),
        PrototypePollutionDetector(),
    ]


__all__ = [
    "BaseDetector",
    "SQLInjectionDetector",
    "XSSDetector",
    "PathTraversalDetector",
    "CommandInjectionDetector",
    "LDAPInjectionDetector",
    "XMLInjectionDetector",
    "NoSQLInjectionDetector",
    "SSRFDetector",
    "XXEDetector",
    "PrototypePollutionDetector",
    "default_signature_library",
]
