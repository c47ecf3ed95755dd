"""
ERP integration modules.

This package contains the ERP backends the bridge can talk to:
- business_central: Microsoft Dynamics 365 Business Central (OData v2.0 API)
- demo: Fixed placeholder data, used when no ERP is configured
"""

import logging
import os

from .base_erp import BaseErp

logger = logging.getLogger(__name__)


def create_erp(config):
    """
    Factory function to create the ERP integration instance.

    Falls back to the demo integration when the active ERP is not
    configured (tenant, company or credentials missing).

    Args:
        config: Full config dict from config.json

    Returns:
        BaseErp: Instance of the active ERP integration

    Raises:
        ValueError: If the ERP is not supported
    """
    from ..core.config_manager import get_base_dir, get_erp_config

    erp_name = config.get('erp', {}).get('active', 'business_central')

    if erp_name == 'demo':
        from .demo.demo_erp import DemoErp
        return DemoErp()
    elif erp_name == 'business_central':
        from .business_central.bc_client import BusinessCentralClient
        from .business_central.bc_integration import BusinessCentralErp

        erp_config = dict(get_erp_config(config, erp_name))

        credentials_file = erp_config.get('credentials_file')
        if credentials_file:
            from .business_central.credentials_handler import load_credentials
            if not os.path.isabs(credentials_file):
                credentials_file = os.path.join(get_base_dir(), credentials_file)
            erp_config.update(load_credentials(credentials_file))
            logger.info(f"ERP credentials loaded from {credentials_file}")

        client = BusinessCentralClient(erp_config)
        if not client.is_configured():
            from .demo.demo_erp import DemoErp
            logger.info("Business Central not configured (tenant/company/credentials) - using demo mode")
            return DemoErp(erp_config)

        return BusinessCentralErp(erp_config, client=client)
    else:
        raise ValueError(f"Unknown ERP: {erp_name}")


__all__ = ['BaseErp', 'create_erp']
