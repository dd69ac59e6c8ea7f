"""Declaration of the Product (wine) entity."""

from src.cellar.entities.registry import EntitySchema, FieldSpec, FieldType, registry

WINE_COLORS = ("red", "white", "rose", "sparkling", "dessert", "fortified", "orange")

PRODUCT_SCHEMA = registry.register(
    EntitySchema(
        name="product",
        table_name="products",
        route="products",
        title="Product",
        default_sort="name",
        search_field="name",
        fields=(
            FieldSpec(
                "name",
                FieldType.TEXT,
                required=True,
                min_length=1,
                max_length=200,
                indexed=True,
                description="Wine name as shown on the label",
                aliases=("wine", "label", "product"),
            ),
            FieldSpec(
                "brand",
                FieldType.TEXT,
                max_length=120,
                filterable=True,
                description="Producer or winery",
                aliases=("producer", "winery", "estate"),
            ),
            FieldSpec(
                "vintage",
                FieldType.INTEGER,
                minimum=1800,
                maximum=2100,
                filterable=True,
                description="Harvest year",
                aliases=("year",),
            ),
            FieldSpec(
                "varietal",
                FieldType.TEXT,
                max_length=120,
                filterable=True,
                description="Grape variety or blend",
                aliases=("grape", "variety"),
            ),
            FieldSpec(
                "region",
                FieldType.TEXT,
                max_length=120,
                filterable=True,
                description="Appellation or region",
                aliases=("appellation",),
            ),
            FieldSpec(
                "country",
                FieldType.TEXT,
                max_length=80,
                filterable=True,
                description="Country of origin",
            ),
            FieldSpec(
                "color",
                FieldType.ENUM,
                choices=WINE_COLORS,
                filterable=True,
                description="Style of wine",
                aliases=("colour", "type", "style"),
            ),
            FieldSpec(
                "sku",
                FieldType.TEXT,
                max_length=64,
                unique=True,
                filterable=True,
                description="Stock keeping unit, unique across the cellar",
                aliases=("code", "article"),
            ),
            FieldSpec(
                "quantity",
                FieldType.INTEGER,
                default=0,
                minimum=0,
                filterable=True,
                description="Bottles in stock",
                aliases=("qty", "stock", "bottles"),
            ),
            FieldSpec(
                "price",
                FieldType.NUMBER,
                minimum=0,
                description="Price per bottle",
                aliases=("cost", "unit_price"),
            ),
            FieldSpec(
                "bottle_size_ml",
                FieldType.INTEGER,
                default=750,
                minimum=50,
                maximum=30000,
                filterable=True,
                description="Bottle volume in millilitres",
                aliases=("size", "volume", "bottle_size"),
            ),
            FieldSpec(
                "is_active",
                FieldType.BOOLEAN,
                default=True,
                filterable=True,
                description="Whether the wine is still listed",
                aliases=("active",),
            ),
            FieldSpec(
                "purchased_at",
                FieldType.TIMESTAMP,
                description="When the stock was bought",
                aliases=("purchased", "purchase_date"),
            ),
            FieldSpec(
                "notes",
                FieldType.TEXT,
                max_length=2000,
                description="Tasting or storage notes",
                aliases=("comment", "comments"),
            ),
            FieldSpec(
                "image_path",
                FieldType.TEXT,
                max_length=255,
                writable=False,
                description="Reference of the stored label image",
            ),
        ),
    )
)
