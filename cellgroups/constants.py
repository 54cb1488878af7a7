"""Shared constant values for the cellgroups framework."""

IMPL_KINDS = ["direct", "thread_local"]

ACCESS_LEVELS = ["uniform", "private", "public"]

ROLES = ["marker", "owner", "cell"]

# "access" expands to a private and a public triple sharing one namespace.
ACCESS_CATEGORIES = ["uniform", "private", "public", "access"]

CATEGORY_LEVELS = {
    "uniform": ("uniform",),
    "private": ("private",),
    "public": ("public",),
    "access": ("public", "private"),
}

# Type-name prefixes inside a generated group namespace.
LEVEL_PREFIXES = {
    "uniform": "Grp",
    "private": "Pvt",
    "public": "Pub",
}

ACCESS_KIND_KEYWORDS = {
    "UniformKind": "uniform",
    "PrivateKind": "private",
    "PublicKind": "public",
    "AccessKind": "access",
}

IMPL_KIND_KEYWORDS = {
    "DirectImpl": "direct",
    "ThreadLocalImpl": "thread_local",
}

COMBINED_CATEGORY_KEYWORDS = {
    "TCellUniGrp": ("direct", "uniform"),
    "TCellPvtGrp": ("direct", "private"),
    "TCellPubGrp": ("direct", "public"),
    "TCellAccGrp": ("direct", "access"),
    "TLCellUniGrp": ("thread_local", "uniform"),
    "TLCellPvtGrp": ("thread_local", "private"),
    "TLCellPubGrp": ("thread_local", "public"),
    "TLCellAccGrp": ("thread_local", "access"),
}

# Primitive classes backing each implementation kind.
PRIMITIVE_TYPES = {
    "direct": ("TCell", "TCellOwner"),
    "thread_local": ("TLCell", "TLCellOwner"),
}

KIND_LABELS = {"direct": "Direct", "thread_local": "ThreadLocal"}
LEVEL_LABELS = {"uniform": "Uniform", "private": "Private", "public": "Public"}
ROLE_LABELS = {"marker": "Marker", "owner": "Owner", "cell": "Cell"}

CATEGORY_COLORS = {
    "uniform": "#8BC34A",
    "private": "#FF7043",
    "public": "#90CAF9",
    "access": "#B39DDB",
    "cluster": "#ECEFF1",
}

UNAVAILABLE_MESSAGE = (
    "{level} {artifact} is unavailable: this cell group does not provide "
    "{level_lower} access"
)

# Names the compiled scope blocks reserve in the caller's namespace.
SCOPE_FRAME_NAME = "_scope_frame"
SCOPE_CELL_NAME = "_scope_cell"
SCOPE_OWNER_NAME = "_scope_owner"
SCOPE_REF_NAME = "_scope_ref"
SCOPE_RUNTIME_NAME = "_scope_rt"
RESERVED_SCOPE_NAMES = (
    SCOPE_FRAME_NAME,
    SCOPE_CELL_NAME,
    SCOPE_OWNER_NAME,
    SCOPE_REF_NAME,
    SCOPE_RUNTIME_NAME,
)

DEFAULT_ROOT = "cellgroups_generated"
MANIFEST_VERSION = "0.3"
LOG_LEVEL_ENV = "CELLGROUPS_LOG_LEVEL"
SCOPE_CACHE_SIZE = 256

# Declarations expanded by the CLI when none are given.
EXAMPLE_DECLARATIONS = """
pub mod example_uni_grp : TLCellUniGrp;
pub mod example_acc_grp : TLCellAccGrp;
pub mod example_cluster :: {
    direct_pvt : TCellPvtGrp,
    nested :: { shared : PublicKind<ThreadLocalImpl> },
};
"""

__all__ = [
    "IMPL_KINDS",
    "ACCESS_LEVELS",
    "ROLES",
    "ACCESS_CATEGORIES",
    "CATEGORY_LEVELS",
    "LEVEL_PREFIXES",
    "ACCESS_KIND_KEYWORDS",
    "IMPL_KIND_KEYWORDS",
    "COMBINED_CATEGORY_KEYWORDS",
    "PRIMITIVE_TYPES",
    "KIND_LABELS",
    "LEVEL_LABELS",
    "ROLE_LABELS",
    "CATEGORY_COLORS",
    "UNAVAILABLE_MESSAGE",
    "SCOPE_FRAME_NAME",
    "SCOPE_CELL_NAME",
    "SCOPE_OWNER_NAME",
    "SCOPE_REF_NAME",
    "SCOPE_RUNTIME_NAME",
    "RESERVED_SCOPE_NAMES",
    "DEFAULT_ROOT",
    "MANIFEST_VERSION",
    "LOG_LEVEL_ENV",
    "SCOPE_CACHE_SIZE",
    "EXAMPLE_DECLARATIONS",
]
