"""
FastAPI Endpoints for the Visitor Intelligence Engine
=====================================================
Visit telemetry intake, lead views and alias administration.

Base URL: http://localhost:8000

Endpoints:
- GET  /                 - API info
- GET  /health           - Liveness probe (uptime, visit count)
- POST /log-visit        - Record and enrich a page visit
- GET  /api/dashboard    - Per-company rollups and recent visits
- GET  /leads            - Potential leads, best first
- POST /add-mapping      - Map a VPN/proxy identifier to a company
- GET  /mappings         - Current alias mappings
- GET  /api/stats        - Engine statistics
- GET  /dashboard        - HTML dashboard
"""

import logging
from typing import Optional
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from datetime import datetime, timezone
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from ..models.schemas import VisitPayload, AliasMappingRequest
from ..config.settings import POTENTIAL_LEAD_THRESHOLD, SERVER_CONFIG
from ..engine import VisitorIntelligenceEngine, extract_client_address

logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App Initialization
# =============================================================================

app = FastAPI(
    title="Visitor Intelligence API",
    description="""
## Visitor Tracking & B2B Lead Scoring

Identifies the organization behind each website visit and scores it as a sales lead.

### Pipeline:
- **Source Lookups**: geo-IP, IP info, RDAP and reverse DNS, concurrently
- **Classification**: hostname and organization-name pattern matching
- **Fusion**: alias mapping → reverse DNS → organization name
- **Lead Scoring**: 0-100 score, high value at 70+
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Tracking snippets post from any site
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Engine Initialization
# =============================================================================

default_engine = VisitorIntelligenceEngine()


def get_engine() -> VisitorIntelligenceEngine:
    return default_engine


# =============================================================================
# Health & Info Endpoints
# =============================================================================

@app.get("/", tags=["Info"])
async def root(engine: VisitorIntelligenceEngine = Depends(get_engine)):
    """API information and available endpoints"""
    return {
        "service": "Visitor Intelligence Engine",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "totalVisits": engine.visit_store.count(),
        "endpoints": {
            "Log Visit": "POST /log-visit",
            "Dashboard API": "GET /api/dashboard",
            "Leads": "GET /leads",
            "Add Mapping": "POST /add-mapping",
            "Mappings": "GET /mappings",
            "Dashboard": "GET /dashboard",
            "Health": "GET /health",
        },
    }


@app.get("/health", tags=["Info"])
async def health_check(engine: VisitorIntelligenceEngine = Depends(get_engine)):
    """Health check endpoint for monitoring"""
    return {
        "status": "healthy",
        "service": "Visitor Intelligence Engine",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": engine.uptime_seconds(),
        "totalVisits": engine.visit_store.count(),
    }


# =============================================================================
# Visit Intake
# =============================================================================

@app.post("/log-visit", tags=["Visits"])
async def log_visit(
    request: Request,
    payload: Optional[VisitPayload] = None,
    engine: VisitorIntelligenceEngine = Depends(get_engine),
):
    """
    Record a page visit and identify the visiting organization.

    The address comes from the first X-Forwarded-For entry, or the
    connection peer. Lookup failures never fail the request.
    """
    try:
        address = extract_client_address(
            request.headers.get("x-forwarded-for"),
            request.client.host if request.client else None,
        )
        visit = await engine.process_visit(address, payload)
        identity = visit.identity

        return {
            "success": True,
            "message": "Visit logged",
            "visit": {
                "company": identity.company,
                "domain": identity.domain,
                "location": identity.location,
                "isHighValue": identity.is_high_value,
                "leadScore": identity.lead_score,
                "detectionMethod": identity.detection_method.value,
                "confidence": identity.confidence,
            },
            "totalVisits": engine.visit_store.count(),
        }
    except Exception:
        logger.exception("Failed to log visit")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to log visit"},
        )


# =============================================================================
# Lead Views
# =============================================================================

@app.get("/api/dashboard", tags=["Leads"])
async def dashboard_data(
    recent: int = Query(SERVER_CONFIG["recent_visits_default"], ge=0, le=500, description="Recent visits to include"),
    engine: VisitorIntelligenceEngine = Depends(get_engine),
):
    """Per-company rollups sorted by lead score, plus recent visits (newest first)"""
    return engine.dashboard(recent=recent)


@app.get("/leads", tags=["Leads"])
async def leads(engine: VisitorIntelligenceEngine = Depends(get_engine)):
    """Companies at or above the potential-lead threshold, best first"""
    found = engine.leads(POTENTIAL_LEAD_THRESHOLD)
    return {
        "success": True,
        "threshold": POTENTIAL_LEAD_THRESHOLD,
        "count": len(found),
        "leads": found,
    }


# =============================================================================
# Alias Administration
# =============================================================================

@app.post("/add-mapping", tags=["Configuration"])
async def add_mapping(
    request: AliasMappingRequest,
    engine: VisitorIntelligenceEngine = Depends(get_engine),
):
    """Map a VPN/proxy identifier (e.g. "p81") to the company behind it"""
    if not (request.vpn_identifier or "").strip() or not (request.real_company or "").strip():
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "vpnIdentifier and realCompany are required"},
        )

    identifier, company = engine.add_alias(request.vpn_identifier, request.real_company)
    return {
        "success": True,
        "message": f"Mapped {identifier} to {company}",
        "mapping": {"vpnIdentifier": identifier, "realCompany": company},
        "totalMappings": len(engine.alias_table),
    }


@app.get("/mappings", tags=["Configuration"])
async def list_mappings(engine: VisitorIntelligenceEngine = Depends(get_engine)):
    """List all alias mappings"""
    mappings = engine.alias_table.snapshot()
    return {
        "count": len(mappings),
        "mappings": [
            {"vpnIdentifier": k, "realCompany": v} for k, v in sorted(mappings.items())
        ],
    }


# =============================================================================
# Statistics & Dashboard
# =============================================================================

@app.get("/api/stats", tags=["Info"])
async def get_stats(engine: VisitorIntelligenceEngine = Depends(get_engine)):
    """Get engine statistics"""
    return engine.get_stats()


@app.get("/dashboard", response_class=HTMLResponse, tags=["Leads"])
async def dashboard_page():
    """HTML dashboard polling /api/dashboard"""
    return DASHBOARD_HTML.replace("{{THRESHOLD}}", str(POTENTIAL_LEAD_THRESHOLD))


DASHBOARD_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Visitor Intelligence Dashboard</title>
    <style>
        body { font-family: Arial, sans-serif; padding: 20px; background: #f5f5f5; }
        .container { max-width: 1000px; margin: 0 auto; background: white; padding: 20px; border-radius: 8px; }
        .stat { display: inline-block; background: #e3f2fd; padding: 12px 18px; margin: 6px; border-radius: 4px; }
        table { width: 100%; border-collapse: collapse; margin-top: 16px; }
        th, td { text-align: left; padding: 6px 8px; border-bottom: 1px solid #eee; }
        .high { background: #e8f5e9; }
        .lead { background: #fffde7; }
        button { background: #2196f3; color: white; border: none; padding: 10px 20px; border-radius: 4px; cursor: pointer; }
    </style>
</head>
<body>
    <div class="container">
        <h1>Visitor Dashboard</h1>
        <button onclick="refresh()">Refresh</button>
        <div id="stats">Loading...</div>
        <table>
            <thead><tr><th>Company</th><th>Score</th><th>Method</th><th>Confidence</th><th>Location</th><th>Visits</th><th>Last visit</th></tr></thead>
            <tbody id="companies"></tbody>
        </table>
        <h2>Recent visits</h2>
        <ul id="recent"></ul>
    </div>
    <script>
        const THRESHOLD = {{THRESHOLD}};
        function esc(s) {
            return String(s == null ? '' : s).replace(/[&<>"']/g, c => ({'&':'&amp;','<':'&lt;','>':'&gt;','"':'&quot;',"'":'&#39;'}[c]));
        }
        function refresh() {
            fetch('/api/dashboard?recent=20')
            .then(r => r.json())
            .then(data => {
                document.getElementById('stats').innerHTML =
                    '<div class="stat"><strong>Total visits:</strong> ' + data.totalVisits + '</div>' +
                    '<div class="stat"><strong>Companies:</strong> ' + data.uniqueCompanies + '</div>' +
                    '<div class="stat"><strong>Referrer domains:</strong> ' + data.uniqueDomains + '</div>' +
                    '<div class="stat"><strong>Potential leads:</strong> ' + data.potentialLeads + '</div>' +
                    '<div class="stat"><strong>High value:</strong> ' + data.highValueCompanies + '</div>';
                document.getElementById('companies').innerHTML = data.companies.map(c =>
                    '<tr class="' + (c.isHighValue ? 'high' : (c.leadScore >= THRESHOLD ? 'lead' : '')) + '">' +
                    '<td>' + esc(c.company) + '</td><td>' + c.leadScore + '</td><td>' + esc(c.detectionMethod) +
                    '</td><td>' + c.confidence + '</td><td>' + esc(c.location) + '</td><td>' + c.visits +
                    '</td><td>' + esc(c.lastVisit) + '</td></tr>').join('');
                document.getElementById('recent').innerHTML = data.recentVisits.map(v =>
                    '<li>' + esc(v.company) + ' - ' + esc(v.currentUrl || v.referrerDomain) + ' - ' + esc(v.timestamp) + '</li>').join('');
            });
        }
        refresh();
        setInterval(refresh, 30000);
    </script>
</body>
</html>
"""


# =============================================================================
# Error Handlers
# =============================================================================

AVAILABLE_ENDPOINTS = [
    "GET /",
    "GET /health",
    "POST /log-visit",
    "GET /api/dashboard",
    "GET /leads",
    "POST /add-mapping",
    "GET /mappings",
    "GET /api/stats",
    "GET /dashboard",
]


@app.exception_handler(404)
async def not_found_handler(request, exc):
    logger.info("404: %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=404,
        content={
            "success": False,
            "error": "Endpoint not found",
            "method": request.method,
            "path": request.url.path,
            "availableEndpoints": AVAILABLE_ENDPOINTS,
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request body"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )
