"""
Cookieless, privacy-first web analytics.

Usage:
    from cachecount import AnalyticsConfig, setup_analytics

    analytics = setup_analytics(AnalyticsConfig.from_env())

    app.include_router(analytics.collect_router)
    app.include_router(analytics.resources_router, prefix="/admin")

    # In templates: {{ analytics.tracking_script("example.com") }}

Or run the standalone app:
    uvicorn cachecount:create_app --factory
"""

import json

from fastapi import FastAPI

from .config import AnalyticsConfig, ConfigurationError
from .core.collect import Collector
from .core.query import QueryEngine
from .core.store import (
    AnalyticsEngineClient,
    DataPointWriter,
    HttpDataPointWriter,
    LoggingDataPointWriter,
)
from .routes import create_collect_router, create_resources_router

__version__ = "0.3.0"
__all__ = [
    "setup_analytics", "create_app", "Analytics",
    "AnalyticsConfig", "ConfigurationError",
]


class Analytics:
    """Main analytics interface: collector, query engine and their routers."""

    def __init__(self, config: AnalyticsConfig, writer: DataPointWriter | None = None):
        self.config = config
        self.store = AnalyticsEngineClient(
            cf_account_id=config.cf_account_id,
            cf_bearer_token=config.cf_bearer_token,
            dataset=config.dataset,
        )
        if writer is None:
            if config.write_url:
                writer = HttpDataPointWriter(config.write_url, config.write_token)
            else:
                writer = LoggingDataPointWriter()

        self.collector = Collector(writer, tz=config.tz)
        self.engine = QueryEngine(self.store)
        self.collect_router = create_collect_router(self.collector)
        self.resources_router = create_resources_router(self.engine)

    def tracking_script(self, site_id: str, reporter_url: str = "/collect") -> str:
        """Generate the tracking script HTML for templates.

        Features:
        - Asks ``/cache`` for the session hit count first, so the pixel
          request carries ``ht``/``v``/``s`` (falls back to a first hit)
        - SPA navigation support (pushState, popstate)
        - UTM parameter extraction for attribution
        - Same-host referrers are dropped, query strings stripped
        """
        url = json.dumps(reporter_url)
        site = json.dumps(site_id)
        return f'''<script>
(function(){{
  var d=document,w=window,h=history,l=location,e=encodeURIComponent;
  var url={url};
  var site={site};
  var cacheUrl=url.replace(/\\/collect$/,"/cache")+"?sid="+e(site);
  var keys={{source:"us",medium:"um",campaign:"uc",term:"ut",content:"uco"}};
  var lastPath="";

  function send(data){{
    var params=Object.keys(data).filter(function(k){{return data[k]!==""}})
      .map(function(k){{return e(k)+"="+e(data[k])}}).join("&");
    new Image().src=url+"?"+params;
  }}

  function track(){{
    if(!l.host)return;
    var path=l.pathname;
    if(path===lastPath)return;
    lastPath=path;
    var host=l.protocol+"//"+l.hostname;
    var ref=d.referrer.indexOf(host)<0?d.referrer.split("?")[0]:"";
    var data={{sid:site,h:host,p:path,r:ref}};
    var q=new URLSearchParams(l.search);
    Object.keys(keys).forEach(function(k){{
      var v=q.get("utm_"+k);if(v)data[keys[k]]=v;
    }});
    var x=new XMLHttpRequest();
    x.open("GET",cacheUrl,true);
    x.timeout=1000;
    x.setRequestHeader("Content-Type","text/plain");
    function fallback(){{data.ht="1";send(data)}}
    x.onload=function(){{
      try{{
        var c=JSON.parse(x.responseText);
        data.ht=String(c.ht);data.v=String(c.v);data.s=String(c.s);
        send(data);
      }}catch(_){{fallback()}}
    }};
    x.onerror=fallback;x.ontimeout=fallback;
    x.send();
  }}

  track();

  var push=h.pushState;
  h.pushState=function(){{push.apply(h,arguments);track()}};
  w.addEventListener("popstate",track);
}})();
</script>'''


def setup_analytics(
    config: AnalyticsConfig | None = None,
    writer: DataPointWriter | None = None,
) -> Analytics:
    """
    Set up analytics.

    Args:
        config: Configuration; read from the environment when omitted
        writer: Data point sink; derived from ``config.write_url`` when omitted

    Returns:
        Analytics instance with collect_router, resources_router and tracking_script()
    """
    return Analytics(config or AnalyticsConfig.from_env(), writer=writer)


def create_app(config: AnalyticsConfig | None = None) -> FastAPI:
    """Create a standalone FastAPI app serving collection and the query API."""
    analytics = setup_analytics(config)

    app = FastAPI(title="cachecount", version=__version__)
    app.state.analytics = analytics
    app.include_router(analytics.collect_router)
    app.include_router(analytics.resources_router)
    return app
