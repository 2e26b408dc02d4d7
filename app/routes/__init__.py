from .main import main_routes_bp
from .fabric_pool import fabric_pool_bp
from .inventory_import import inventory_import_bp
from .pricing_grids import pricing_grids_bp
from .client_import import client_import_bp

__all__ = ["main_routes_bp", "fabric_pool_bp", "inventory_import_bp", "pricing_grids_bp", "client_import_bp"]
