"""
M365 Tenant Governance Automation
=================================
Administrative automation for Microsoft 365 / Entra ID tenant governance:

  * guest-export       Export SharePoint / OneDrive guest users to CSV
  * access-review      Start Entra ID access reviews on filtered M365 groups
  * grant-permissions  Assign the Graph app roles the access-review run needs

Every write against the tenant passes through the Safety Guardian allow-list.
"""

__version__ = "1.0.0"
__author__ = "M365 Tenant Governance"
