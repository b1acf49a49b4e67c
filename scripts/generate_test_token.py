#!/usr/bin/env python3
"""Generate test JWT tokens for API testing."""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.auth import Role, create_access_token

for role in Role:
    token = create_access_token(f"{role.value}-test", roles=[role.value])
    print(f"{role.value.title()} Token:\n{token}\n")
