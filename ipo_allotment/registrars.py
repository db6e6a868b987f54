from ipo_allotment.schemas import RegistrarProfile

DEFAULT_REGISTRARS = (
    RegistrarProfile(
        name="KFin Technologies",
        slug="kfintech",
        base_url="https://kosmic.kfintech.com",
        endpoint_pattern="https://kosmic.kfintech.com/ipostatus/?company={company}&pan={pan}",
        required_params=["pan"],
        response_format="html",
        parsing_rules={
            "statusSelector": '.allotment-status, td:contains("Allotted")',
            "sharesSelector": 'td:contains("Shares") + td',
            "notFoundSelectors": [".no-record", ':contains("No record found")'],
            "appNoSelector": 'td:contains("Application") + td',
        },
    ),
    RegistrarProfile(
        name="Link Intime India",
        slug="linkintime",
        base_url="https://linkintime.co.in",
        endpoint_pattern="https://linkintime.co.in/MIPO/Ipoallotment.html?company={company}&pan={pan}",
        required_params=["pan"],
        response_format="html",
        parsing_rules={
            "statusSelector": "#allotmentStatus",
            "sharesSelector": "#sharesAllotted",
            "notFoundSelectors": ["#noRecord", ':contains("not found")'],
            "appNoSelector": "#applicationNo",
        },
    ),
    RegistrarProfile(
        name="Bigshare Services",
        slug="bigshare",
        base_url="https://ipo.bigshareonline.com",
        endpoint_pattern="https://ipo.bigshareonline.com/IPO_STATUS/IPO_allotment.asp?company={company}&pan={pan}",
        required_params=["pan"],
        response_format="html",
        parsing_rules={
            "statusSelector": 'table tr:contains("Status") td:last',
            "sharesSelector": 'table tr:contains("Shares") td:last',
            "notFoundSelectors": [':contains("No Record")'],
            "appNoSelector": 'table tr:contains("Application") td:last',
        },
    ),
    RegistrarProfile(
        name="Skyline Financial",
        slug="skyline",
        base_url="https://www.skylinerta.com",
        endpoint_pattern="https://rti.skylinerta.com/rti_query.php?mode=ipo&company={company}&pan={pan}",
        required_params=["pan"],
        response_format="html",
        parsing_rules={
            "statusSelector": ".allotment-result",
            "sharesSelector": ".shares-allotted",
            "notFoundSelectors": [".no-data"],
            "appNoSelector": ".app-number",
        },
    ),
    RegistrarProfile(
        name="MAS Services",
        slug="mas",
        base_url="https://www.masserv.com",
        endpoint_pattern="https://www.masserv.com/IPO/IPOAllotment.aspx?company={company}&pan={pan}",
        required_params=["pan"],
        response_format="html",
        parsing_rules={
            "statusSelector": "#lblStatus",
            "sharesSelector": "#lblShares",
            "notFoundSelectors": ["#lblNoRecord"],
            "appNoSelector": "#lblAppNo",
        },
    ),
)

REGISTRAR_BY_SLUG = {registrar.slug: registrar for registrar in DEFAULT_REGISTRARS}
